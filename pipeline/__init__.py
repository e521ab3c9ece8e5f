"""
Extraction pipeline for Ausbildung postings.

Cleaned posting text goes through the rate-limited extraction client, the
reply is validated and normalized into a JobPosting, and the job store
persists it.
"""

__version__ = "1.0.0"
