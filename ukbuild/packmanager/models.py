"""PackageSource ORM model.

Stores the catalog origins (index URLs or local paths) registered with a
package manager through ``ukbuild source``.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ukbuild.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PackageSource(Base):
    """ORM model for a registered package source.

    Attributes:
        id: Primary key.
        manager: Format of the package manager owning the source.
        location: URL or filesystem path of the source.
        added_at: Registration timestamp.
        last_updated_at: Timestamp of the last successful index update.
        checksum: SHA-256 of the last fetched index.
    """

    __tablename__ = "package_sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    manager: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    location: Mapped[str] = mapped_column(String(1000), nullable=False)
    added_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=_utcnow
    )
    last_updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    checksum: Mapped[str | None] = mapped_column(String(128), nullable=True)

    __table_args__ = (
        Index(
            "ix_package_sources_manager_location",
            "manager",
            "location",
            unique=True,
        ),
    )

    def __repr__(self) -> str:
        """Return string representation of PackageSource."""
        return f"<PackageSource(id={self.id}, manager='{self.manager}', location='{self.location}')>"

    def mark_updated(self, checksum: str) -> None:
        """Record a successful index refresh."""
        self.checksum = checksum
        self.last_updated_at = _utcnow()


__all__ = ["PackageSource"]
