import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Eventos de emisión/revocación/créditos
audit_log = logging.getLogger("pdfvc.audit")
# Reembolsos fallidos que hay que conciliar a mano
reconciliation_log = logging.getLogger("pdfvc.reconciliation")


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger("pdfvc")
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level.upper())
