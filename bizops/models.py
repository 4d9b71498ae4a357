from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Contact(Base):
    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(300), default="")
    first_name: Mapped[str] = mapped_column(String(150), default="")
    last_name: Mapped[str] = mapped_column(String(150), default="")
    email: Mapped[str] = mapped_column(String(300), default="")
    company: Mapped[str] = mapped_column(String(300), default="")
    job_title: Mapped[str] = mapped_column(String(300), default="")
    contact_type: Mapped[str] = mapped_column(String(50), default="guest")
    linkedin_url: Mapped[str] = mapped_column(String(500), default="")
    is_in_cto_club: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    pipeline_items: Mapped[list[PipelineItem]] = relationship(
        "PipelineItem", back_populates="contact", cascade="all, delete-orphan",
    )

    @property
    def display_name(self) -> str:
        if self.first_name:
            return f"{self.first_name} {self.last_name or ''}".strip()
        if self.name:
            return self.name.strip()
        if self.email:
            return self.email
        return "Unknown Contact"


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    priority: Mapped[str] = mapped_column(String(20), default="medium")  # high | medium | low
    status: Mapped[str] = mapped_column(String(20), default="potential")  # potential | active | on-hold | completed | archived
    is_collaboration: Mapped[bool] = mapped_column(Boolean, default=False)
    # Star rating (0-5) derived from detailed_ratings_json, kept for sorting
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    detailed_ratings_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())


class PipelineItem(Base):
    __tablename__ = "pipeline_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contact_id: Mapped[int] = mapped_column(Integer, ForeignKey("contacts.id"), nullable=False)
    pipeline: Mapped[str] = mapped_column(String(50), default="relationship")  # relationship | cto_club | cto_outreach
    pipeline_stage: Mapped[str] = mapped_column(String(100), nullable=False)
    next_action_description: Mapped[str] = mapped_column(Text, default="")
    next_action_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    contact: Mapped[Contact] = relationship("Contact", back_populates="pipeline_items")


class StageRule(Base):
    __tablename__ = "stage_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pipeline: Mapped[str] = mapped_column(String(50), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    keywords_json: Mapped[str] = mapped_column(Text, default="[]")
    implied_stage_index: Mapped[int] = mapped_column(Integer, nullable=False)
