from __future__ import annotations

from sqlalchemy import Boolean, Column, Float, Integer, String, Text, UniqueConstraint

from db import Base
from stages import OfferStatus, RoundStatus, Stage, StageStatus


class OnboardingProgress(Base):
    __tablename__ = "onboarding_progress"

    # One row per subject; writes go through an upsert on this key.
    subjectId = Column(String, primary_key=True)
    stage = Column(String, nullable=False, default=Stage.PROFILE.value, index=True)
    status = Column(String, nullable=False, default=StageStatus.PENDING.value, index=True)
    failedAtStage = Column(String, nullable=True)
    failedReason = Column(Text, nullable=True)
    failedAt = Column(Text, nullable=True)
    retryAfter = Column(Text, nullable=True)
    completedAt = Column(Text, nullable=True)
    createdAt = Column(Text, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")


class InterviewQuestion(Base):
    __tablename__ = "interview_questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    roundNumber = Column(Integer, nullable=False, index=True)
    ordering = Column(Integer, nullable=False, default=0)
    question = Column(Text, nullable=False, default="")
    correctAnswer = Column(Text, nullable=False, default="")
    points = Column(Integer, nullable=False, default=1)
    active = Column(Boolean, nullable=False, default=True)
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class InterviewRound(Base):
    __tablename__ = "interview_rounds"
    __table_args__ = (UniqueConstraint("subjectId", "roundNumber", name="uq_interview_rounds_subject_round"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    subjectId = Column(String, nullable=False, index=True)
    roundNumber = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=RoundStatus.PENDING.value)
    score = Column(Integer, nullable=True)
    percentage = Column(Float, nullable=True)
    completedAt = Column(Text, nullable=True)
    createdAt = Column(Text, nullable=False, default="")


class CandidateDocument(Base):
    __tablename__ = "candidate_documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subjectId = Column(String, nullable=False, index=True)
    documentType = Column(String, nullable=False, index=True)
    filePath = Column(Text, nullable=False, default="")
    originalName = Column(Text, nullable=False, default="")
    fileSize = Column(Integer, nullable=True)
    mimeType = Column(String, nullable=False, default="")
    uploadedAt = Column(Text, nullable=False, default="")
    uploadedBy = Column(String, nullable=False, default="")


class OfferLetter(Base):
    __tablename__ = "offer_letters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subjectId = Column(String, nullable=False, index=True)
    uploadedBy = Column(String, nullable=False, default="")
    filePath = Column(Text, nullable=False, default="")
    originalName = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default=OfferStatus.PENDING.value, index=True)
    signedFilePath = Column(Text, nullable=False, default="")
    signedOriginalName = Column(Text, nullable=False, default="")
    signedAt = Column(Text, nullable=True)
    uploadedAt = Column(Text, nullable=False, default="")


class IdCard(Base):
    __tablename__ = "id_cards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subjectId = Column(String, nullable=False, index=True)
    cardNumber = Column(String, nullable=False, unique=True)
    filePath = Column(Text, nullable=False, default="")
    generatedAt = Column(Text, nullable=False, default="")
    generatedBy = Column(String, nullable=False, default="")


class SalaryStructure(Base):
    __tablename__ = "salary_structures"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subjectId = Column(String, nullable=False, index=True)
    basicSalary = Column(Float, nullable=False, default=0)
    hra = Column(Float, nullable=False, default=0)
    conveyanceAllowance = Column(Float, nullable=False, default=0)
    medicalAllowance = Column(Float, nullable=False, default=0)
    lta = Column(Float, nullable=False, default=0)
    otherAllowances = Column(Float, nullable=False, default=0)
    totalEarnings = Column(Float, nullable=True)
    pfEmployee = Column(Float, nullable=False, default=0)
    professionalTax = Column(Float, nullable=False, default=0)
    taxDeductions = Column(Float, nullable=False, default=0)
    otherDeductions = Column(Float, nullable=False, default=0)
    totalDeductions = Column(Float, nullable=True)
    effectiveFrom = Column(Text, nullable=False, default="")
    isActive = Column(Boolean, nullable=False, default=True)


class AuditLog(Base):
    __tablename__ = "audit_log"

    logId = Column(String, primary_key=True)
    entityType = Column(String, nullable=False, default="", index=True)
    entityId = Column(String, nullable=False, default="", index=True)
    action = Column(String, nullable=False, default="", index=True)
    fromState = Column(String, nullable=False, default="")
    toState = Column(String, nullable=False, default="")
    stageTag = Column(String, nullable=False, default="", index=True)
    remark = Column(Text, nullable=False, default="")
    actorUserId = Column(String, nullable=False, default="", index=True)
    actorRole = Column(String, nullable=False, default="", index=True)
    at = Column(Text, nullable=False, default="", index=True)
    metaJson = Column(Text, nullable=False, default="")
