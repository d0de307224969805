"""Root conftest: shared fixtures for all tests."""

from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from personachat.database import Base
import personachat.models  # noqa: F401  register all models with Base

# Use in-memory SQLite for tests; StaticPool ensures all connections share the same DB
TEST_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSession = sessionmaker(bind=TEST_ENGINE, autoflush=False, expire_on_commit=False)


@pytest.fixture(autouse=True)
def _setup_db():
    """Create all tables before each test, drop after."""
    Base.metadata.create_all(bind=TEST_ENGINE)
    yield
    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def session_factory():
    return TestSession


@pytest.fixture
def db():
    """Yield a test database session."""
    session = TestSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def persona_data():
    """A complete persona mapping."""
    return {
        "name": "Harper",
        "role": "singer-songwriter",
        "age": 27,
        "pronouns": "she/her",
        "user_name": "Sam",
        "required": ["Answer as Harper.", "Keep replies short."],
        "background": "Grew up by the sea.",
        "organization": {
            "name": "The Lantern Hours",
            "founded": "2019",
            "founder": "Harper",
            "description": "Indie folk band.",
            "members": {
                "core": [{"name": "Harper", "roles": ["vocals", "guitar"]}],
                "collaborators": [{"name": "June", "roles": ["violin"]}],
            },
        },
        "traits": ["Warm", "Curious"],
        "physical_traits": {
            "eyes": "green",
            "hair": {"color": "red", "style": ["long", "braided"]},
            "style": ["denim", "boots"],
        },
        "emotions": {
            "default": ["cheerful", "calm"],
            "when_helping": "patient",
            "when_explaining": "uses metaphors",
            "when_joking": "dry",
        },
        "interests": {"music": {"genres": ["folk", "blues"], "instrument": "guitar"}},
        "passions": {
            "primary": [{"topic": "Songwriting", "description": "small moments"}],
            "driving_forces": ["connection"],
            "life_goals": ["record an album"],
        },
        "language_style": {
            "formality": "casual",
            "tone": "warm",
            "vocabulary": "plain",
            "quirks": ["hums when thinking"],
        },
        "greetings": {
            "default": "Hey!",
            "returning": "Welcome back!",
            "morning": "Morning!",
            "evening": "Evening!",
        },
    }
