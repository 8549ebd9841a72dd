"""Client side of the signup pipeline: HTTP client, poller, recovery cache and wizard pipeline."""
from provisioning.client.api import SignupApiClient
from provisioning.client.pipeline import Completed, Failed, NavigateTo, SignupForm, SignupPipeline
from provisioning.client.poller import ConfirmationPoller, PollResult
from provisioning.client.recovery_cache import (
    CorruptRecoveryEntryError,
    FileRecoveryCache,
    MemoryRecoveryCache,
    RecoveryCache,
    RecoveryEntry,
)
