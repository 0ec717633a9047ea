"""Core building blocks shared by the book pipeline."""
