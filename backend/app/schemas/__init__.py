"""Pydantic schemas for the Field Jobs API."""

from app.schemas.job import *
