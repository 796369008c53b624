# Import all models so Alembic can discover them via Base.metadata
from .access_code import AccessCode
from .backup_operation import BackupOperation
from .certificate import IssuedCertificate
from .issuance_log import IssuanceLog
from .template import CertificateTemplate

__all__ = [
    "AccessCode",
    "BackupOperation",
    "CertificateTemplate",
    "IssuanceLog",
    "IssuedCertificate",
]
