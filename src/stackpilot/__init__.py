"""stackpilot - declarative provisioning and deployment orchestrator."""

__version__ = "0.1.0"
