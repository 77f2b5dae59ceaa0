"""Data models shared by the game engine and the persistence layer."""
