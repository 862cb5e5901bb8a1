"""MFA infrastructure: store and SMS adapters, repositories, method subsystems."""
