"""
Models package - Pydantic models for type-safe admission handling.

Defines data models for:
- CNI kinds and the missing-ConfigMap policy
- AdmissionReview envelopes and admission subjects
- JSON Patch operations and admission verdicts
- Certificate bundles and the webhook identity
"""
