# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/sealwatch/bootstrap/errors.py


class BootstrapError(RuntimeError):
    """Base class for bootstrap failures; ``step`` names the step that failed."""

    def __init__(self, step: str, message: str):
        self.step = step
        self.message = message
        super().__init__(f"[{step}] {message}")


class ReadinessTimeoutError(BootstrapError):
    """The leader never became ready for initialization."""


class AlreadyInitializedError(BootstrapError):
    """The leader is already initialized; refusing to initialize again."""


class NotInitializedError(BootstrapError):
    """Resume was requested but the leader has not been initialized."""


class InitializeError(BootstrapError):
    pass


class KeyMaterialStepError(BootstrapError):
    """Key material could not be persisted or loaded."""


class JoinError(BootstrapError):
    pass


class UnsealStepError(BootstrapError):
    pass


class BootstrapCancelled(BootstrapError):
    """Shutdown was requested between steps."""
