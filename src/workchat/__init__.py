"""workchat — a conversational orchestrator over workplace platform tools."""

__version__ = "0.1.0"
