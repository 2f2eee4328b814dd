"""Lead module -- models, schemas, repository, and fit scoring for company leads.

Provides SQLAlchemy models (Lead, Interaction, EnrichmentAttempt,
FitScoreRule), Pydantic schemas for canonical enrichment data, LeadRepository
for async access, and the rule-based fit score engine.
"""
