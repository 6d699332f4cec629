from datetime import datetime
from roster_api.extensions import db


class AuditMixin:
    """created/updated stamps + acting user id threaded in by the services."""
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)
    created_by = db.Column(db.String(64), nullable=False, default="system")
    updated_by = db.Column(db.String(64))

    def touch(self, actor: str):
        self.updated_by = actor
        self.updated_at = datetime.utcnow()
