"""AI-backed extraction of structured resume fields (Gemini)."""
