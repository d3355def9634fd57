"""
Tests package - Test suite for the Deployment/HPA validator.

Contains:
- unit/: Unit tests for individual components
- fixtures/: Certificate and AdmissionReview builders
"""
