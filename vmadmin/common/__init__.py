# Common utilities
from vmadmin.common.crypto import SecretAgreement as SecretAgreement
from vmadmin.common.logging_utils import setup_logger as setup_logger
from vmadmin.common.mixins import Configurable as Configurable

__all__ = ["Configurable", "SecretAgreement", "setup_logger"]
