from __future__ import annotations

from typing_extensions import override

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for facetag models."""

    pass


class School(Base):
    __tablename__ = "schools"  # pyright: ignore[reportUnannotatedClassAttribute]

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)

    # Per-school switch for automatic analysis
    enable_ai_analysis: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    classes: Mapped[list[SchoolClass]] = relationship(
        "SchoolClass", back_populates="school", cascade="all, delete-orphan"
    )

    @override
    def __repr__(self) -> str:
        return f"<School(id={self.id}, name={self.name})>"


class SchoolClass(Base):
    __tablename__ = "classes"  # pyright: ignore[reportUnannotatedClassAttribute]

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    school_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String, nullable=False)

    school: Mapped[School] = relationship("School", back_populates="classes")

    @override
    def __repr__(self) -> str:
        return f"<SchoolClass(id={self.id}, school_id={self.school_id})>"


class Video(Base):
    """An uploaded video and its current analysis status."""

    __tablename__ = "videos"  # pyright: ignore[reportUnannotatedClassAttribute]

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    class_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String, nullable=False, default="")

    # Stream/delivery URL; the provider's external id is parsed from it
    video_url: Mapped[str | None] = mapped_column(String, nullable=True)

    # Analysis status (display string is derived, see analysis.status)
    analysis_state: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    analysis_progress: Mapped[float | None] = mapped_column(Float, nullable=True)
    analysis_child_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    analysis_appearance_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    analysis_run_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    analysis_updated_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    school_class: Mapped[SchoolClass] = relationship("SchoolClass")
    tags: Mapped[list[VideoFaceTag]] = relationship(
        "VideoFaceTag", back_populates="video", cascade="all, delete-orphan"
    )

    @override
    def __repr__(self) -> str:
        return f"<Video(id={self.id}, state={self.analysis_state})>"


class AnalysisRun(Base):
    """One trigger of the analysis pipeline for a video.

    ``Video.analysis_run_id`` points at the only run allowed to write status and tags.
    """

    __tablename__ = "analysis_runs"  # pyright: ignore[reportUnannotatedClassAttribute]

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    video_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, index=True
    )
    trigger: Mapped[str] = mapped_column(String, nullable=False, default="admin")
    state: Mapped[str] = mapped_column(String, nullable=False)
    started_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    finished_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    @override
    def __repr__(self) -> str:
        return f"<AnalysisRun(id={self.id}, video_id={self.video_id}, state={self.state})>"


class Child(Base):
    __tablename__ = "children"  # pyright: ignore[reportUnannotatedClassAttribute]

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    school_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("schools.id", ondelete="SET NULL"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String, nullable=False)

    # Primary face pointer, always the most recent reference face
    face_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    face_image_key: Mapped[str | None] = mapped_column(String, nullable=True)
    face_registered_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    faces: Mapped[list[ChildFace]] = relationship(
        "ChildFace", back_populates="child", cascade="all, delete-orphan"
    )

    @override
    def __repr__(self) -> str:
        return f"<Child(id={self.id}, name={self.name})>"


class ChildFace(Base):
    """A reference face indexed in the recognition collection."""

    __tablename__ = "child_faces"  # pyright: ignore[reportUnannotatedClassAttribute]

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    child_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("children.id", ondelete="CASCADE"), nullable=False, index=True
    )
    face_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    image_key: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    child: Mapped[Child] = relationship("Child", back_populates="faces")

    @override
    def __repr__(self) -> str:
        return f"<ChildFace(id={self.id}, child_id={self.child_id}, face_id={self.face_id})>"


class Guardian(Base):
    __tablename__ = "guardians"  # pyright: ignore[reportUnannotatedClassAttribute]

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)

    @override
    def __repr__(self) -> str:
        return f"<Guardian(id={self.id})>"


class GuardianChild(Base):
    """Custodial relationship between a guardian and a child."""

    __tablename__ = "guardian_children"  # pyright: ignore[reportUnannotatedClassAttribute]

    guardian_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("guardians.id", ondelete="CASCADE"), primary_key=True
    )
    child_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("children.id", ondelete="CASCADE"), primary_key=True
    )


class VideoFaceTag(Base):
    """A time range of a video in which a child (or an unlabelled person) appears."""

    __tablename__ = "video_face_tags"  # pyright: ignore[reportUnannotatedClassAttribute]
    __table_args__ = (  # pyright: ignore[reportUnannotatedClassAttribute]
        CheckConstraint(
            "NOT is_tentative OR (child_id IS NOT NULL AND thumbnail_key IS NOT NULL)",
            name="ck_tentative_has_child_and_thumbnail",
        ),
        UniqueConstraint("video_id", "child_id", "start_time", name="uq_tag_video_child_start"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    video_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # NULL for legacy "Person N" annotations
    child_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("children.id", ondelete="CASCADE"), nullable=True, index=True
    )
    label: Mapped[str] = mapped_column(String, nullable=False)
    start_time: Mapped[float] = mapped_column(Float, nullable=False)
    end_time: Mapped[float] = mapped_column(Float, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    is_tentative: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    thumbnail_key: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    video: Mapped[Video] = relationship("Video", back_populates="tags")

    @override
    def __repr__(self) -> str:
        return (
            f"<VideoFaceTag(id={self.id}, video_id={self.video_id}, child_id={self.child_id}, "
            f"start={self.start_time}, tentative={self.is_tentative})>"
        )
