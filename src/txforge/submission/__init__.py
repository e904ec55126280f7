"""Submission — retrying submit and confirmation tracking."""

from txforge.submission.client import SubmissionClient
from txforge.submission.state import TRANSPORT_EXHAUSTED, SubmissionRecord, SubmissionState

__all__ = ["TRANSPORT_EXHAUSTED", "SubmissionClient", "SubmissionRecord", "SubmissionState"]
