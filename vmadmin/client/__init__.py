# Client components
