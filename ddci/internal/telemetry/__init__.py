from ddci.internal.telemetry.writer import telemetry_writer


__all__ = ["telemetry_writer"]
