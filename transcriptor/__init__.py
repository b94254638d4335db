"""Transcriptor: media upload, transcription and JBA code detection service."""
