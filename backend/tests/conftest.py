"""Shared test configuration."""
import sys
import os

# Add backend directory to path so imports work
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Throwaway SQLite database for all tests
os.environ["DATABASE_URL"] = "sqlite:///./test_market_engine.db"
os.environ["ENGINE_SEED"] = "0"
os.environ["REGIME_CUTOVER_YEAR"] = "2024"
os.environ["TRIGGER_RATE_LIMIT"] = "1000/minute"
