"""Configuration, logging, errors and shared enums for the MFA core."""
