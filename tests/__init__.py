"""
Tests package - Test suite for the ENI IP webhook.

Contains:
- unit/: Unit tests for individual components, run against an in-memory
  cluster and aiohttp test servers
"""
