"""Shared declarative base for all onboarding models."""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
