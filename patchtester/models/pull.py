"""Pull request registry model."""

from __future__ import annotations

from sqlalchemy import Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from patchtester.models.base import Base


class Pull(Base):
    """Open pull request mirrored from GitHub (regenerated on every fetch)."""

    __tablename__ = "pulls"

    pull_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    pull_url: Mapped[str] = mapped_column(Text, nullable=False)
    is_rtc: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    branch: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    # Head commit of the currently applied test, empty when nothing is applied.
    sha: Mapped[str] = mapped_column(String(40), nullable=False, default="")

    __table_args__ = (Index("idx_pulls_branch", "branch"),)
