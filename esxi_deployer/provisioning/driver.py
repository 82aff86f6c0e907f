"""
Provisioning Driver

Drives one host through a virtual-media install:

    IDLE -> MEDIA_EJECTED -> MEDIA_INSERTED -> BOOT_CONFIGURED -> POWERED_ON
         -> INSTALLING -> VERIFYING -> SUCCEEDED | FAILED

Transport problems and verification timeouts restart the whole sequence,
up to max_attempts. A rejection by the BMC fails the session at once.
Whatever the outcome, the virtual media is ejected before the session ends.
"""

import threading
import time
import traceback
from datetime import datetime
from typing import Optional

from loguru import logger

from ..bmc import VendorAdapter
from ..configs import DriverConfig, HostSpec, PowerState, ProvisioningSession, ResetType, SessionState
from ..exceptions import (
    ProvisioningAborted,
    TransportError,
    VendorRejected,
    VerificationTimeout,
)
from .probe import Probe, ReachabilityProbe


class ProvisioningDriver:
    """
    Runs the provisioning state machine for one host.

    BMC calls are strictly sequential. Every wait goes through the shared
    abort event, so an abort interrupts sleeps and polls.
    """

    def __init__(
        self,
        adapter: VendorAdapter,
        config: Optional[DriverConfig] = None,
        probe: Optional[Probe] = None,
        abort_event: Optional[threading.Event] = None,
    ):
        self.adapter = adapter
        self.config = config or DriverConfig()
        self.probe = probe or ReachabilityProbe(port=self.config.verify_port)
        self.abort_event = abort_event or threading.Event()

    # ==================== Helpers ====================

    def _check_abort(self) -> None:
        if self.abort_event.is_set():
            raise ProvisioningAborted("provisioning aborted by operator")

    def _sleep(self, seconds: float) -> None:
        if self.abort_event.wait(seconds):
            raise ProvisioningAborted("provisioning aborted by operator")

    @staticmethod
    def _record_error(session: ProvisioningSession, error: Exception) -> None:
        session.last_error = str(error)
        session.error_kind = type(error).__name__

    # ==================== Phases ====================

    def _boot_sequence(self, session: ProvisioningSession, host: HostSpec, image_uri: str) -> None:
        adapter = self.adapter

        self._check_abort()
        adapter.eject_media()
        session.transition(SessionState.MEDIA_EJECTED)

        self._check_abort()
        adapter.insert_media(image_uri, write_protected=self.config.write_protected)
        if not adapter.is_media_attached():
            raise TransportError(host.bmc_ip, "insert media", "BMC reports no media attached after insert")
        session.transition(SessionState.MEDIA_INSERTED)

        self._check_abort()
        adapter.set_one_time_boot(host.boot_mode)
        session.transition(SessionState.BOOT_CONFIGURED)

        self._check_abort()
        power = adapter.get_power_state()
        reset_type = ResetType.FORCE_RESTART if power == PowerState.ON else ResetType.POWER_ON
        logger.info(f"{host.hostname}: power is {power.value}, sending {reset_type.value}")
        adapter.reset(reset_type)
        session.transition(SessionState.POWERED_ON)

    def _wait_for_install(self, session: ProvisioningSession, host: HostSpec) -> None:
        session.transition(SessionState.INSTALLING)
        logger.info(f"{host.hostname}: installing, waiting for {host.mgmt_ip}")
        start = time.monotonic()
        # Only an answer after the host was seen down counts: the previous OS
        # keeps answering until the queued reset takes effect.
        seen_down = False
        while True:
            self._sleep(self.config.poll_interval_seconds)
            if self.probe(host):
                if seen_down:
                    logger.info(f"{host.hostname}: {host.mgmt_ip} answered after {time.monotonic() - start:.0f}s")
                    return
            elif not seen_down:
                logger.debug(f"{host.hostname}: {host.mgmt_ip} went down, installer is booting")
                seen_down = True
            if time.monotonic() - start >= self.config.install_timeout_seconds:
                logger.warning(f"{host.hostname}: install wait of {self.config.install_timeout_seconds}s elapsed")
                return

    def _verify(self, session: ProvisioningSession, host: HostSpec) -> None:
        session.transition(SessionState.VERIFYING)
        required = self.config.verify_successes
        start = time.monotonic()
        successes = 0
        while True:
            self._check_abort()
            successes = successes + 1 if self.probe(host) else 0
            if successes >= required:
                logger.success(f"{host.hostname}: {host.mgmt_ip} reachable {successes} times in a row")
                return
            elapsed = time.monotonic() - start
            if elapsed >= self.config.verify_window_seconds:
                raise VerificationTimeout(host.hostname, host.mgmt_ip, elapsed)
            self._sleep(self.config.poll_interval_seconds)

    def _attempt(self, session: ProvisioningSession, host: HostSpec, image_uri: str) -> None:
        self._boot_sequence(session, host, image_uri)
        self._wait_for_install(session, host)
        self._verify(session, host)

    def _final_eject(self, host: HostSpec) -> None:
        for attempt in range(1, self.config.max_attempts + 1):
            try:
                self.adapter.eject_media()
                return
            except TransportError as e:
                logger.warning(f"{host.hostname}: final eject attempt {attempt} failed: {e}")
                if attempt < self.config.max_attempts and not self.abort_event.is_set():
                    self.abort_event.wait(self.config.retry_backoff_seconds)
            except VendorRejected as e:
                logger.error(f"{host.hostname}: final eject rejected: {e}")
                return
        logger.error(f"{host.hostname}: virtual media may still be attached to {host.bmc_ip}")

    # ==================== Entry point ====================

    def run(self, host: HostSpec, image_uri: str) -> ProvisioningSession:
        """
        Provision one host from the image at image_uri.

        Returns:
            The session in a terminal state. Errors are recorded on the
            session, not raised.
        """
        max_attempts = self.config.max_attempts
        session = ProvisioningSession(
            hostname=host.hostname,
            max_attempts=max_attempts,
            started_at=datetime.now().isoformat(),
        )
        logger.info(f"{host.hostname}: provisioning via {self.adapter.vendor.value} BMC {host.bmc_ip}")

        try:
            for attempt in range(1, max_attempts + 1):
                session.attempts = attempt
                session.transition(SessionState.IDLE)
                try:
                    self._attempt(session, host, image_uri)
                    session.transition(SessionState.SUCCEEDED)
                    break
                except (TransportError, VerificationTimeout) as e:
                    self._record_error(session, e)
                    if attempt >= max_attempts:
                        logger.error(f"{host.hostname}: attempt {attempt}/{max_attempts} failed, giving up: {e}")
                        session.transition(SessionState.FAILED)
                        break
                    logger.warning(
                        f"{host.hostname}: attempt {attempt}/{max_attempts} failed: {e}; "
                        f"retrying in {self.config.retry_backoff_seconds}s"
                    )
                    self._sleep(self.config.retry_backoff_seconds)
                except VendorRejected as e:
                    self._record_error(session, e)
                    logger.error(f"{host.hostname}: BMC rejected request, not retrying: {e}")
                    session.transition(SessionState.FAILED)
                    break
        except ProvisioningAborted as e:
            self._record_error(session, e)
            logger.warning(f"{host.hostname}: aborted in state {session.state.value}")
            session.transition(SessionState.FAILED)
        except Exception as e:
            self._record_error(session, e)
            logger.error(f"{host.hostname}: unexpected error during provisioning")
            logger.error(traceback.format_exc())
            session.transition(SessionState.FAILED)
        finally:
            self._final_eject(host)
            self.adapter.close()
            session.completed_at = datetime.now().isoformat()

        if session.succeeded:
            logger.success(f"{host.hostname}: provisioned in {session.attempts} attempt(s)")
        else:
            logger.error(f"{host.hostname}: provisioning failed after {session.attempts} attempt(s): {session.last_error}")
        return session
