#!/usr/bin/env python3
"""
Direct image access state transitions for a single copy

Enable:  image access (latest image, logged access) -> poll -> direct access
Disable: disable image access -> poll -> start transfer

Polling never fails an operation: when pollmax is exhausted a warning is
logged and the next phase runs anyway. Rejected mutating calls do fail the
copy (direct access and start transfer are retried first).
"""

import logging
import time
from enum import Enum
from typing import Callable, List, Optional

from rpconfig import Config
from rpmodels import (
    LOGGED_ACCESS,
    ApiResponse,
    Copy,
    Direction,
    Outcome,
    OutcomeStatus,
    Task,
    TransitionError,
)

logger = logging.getLogger(__name__)


class State(Enum):
    IDLE = "IDLE"
    IMAGE_ACCESS_ENABLING = "IMAGE_ACCESS_ENABLING"
    IMAGE_ACCESS_DISABLING = "IMAGE_ACCESS_DISABLING"
    IMAGE_ACCESS_POLLING = "IMAGE_ACCESS_POLLING"
    DIRECT_ACCESS_ENABLING = "DIRECT_ACCESS_ENABLING"
    TRANSFER_STARTING = "TRANSFER_STARTING"
    DONE = "DONE"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class AccessStateController:
    def __init__(
        self,
        client,
        directory,
        config: Config,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.directory = directory
        self.config = config
        self.sleep = sleep
        self.history: List[State] = []

    def _enter(self, state: State, task: Optional[Task] = None) -> None:
        self.history.append(state)
        if task is not None:
            logger.debug(f"{task.group_name} - {task.copy_name}: {state.value}")

    def run(self, group_name: str, copy: Copy, direction: Direction) -> Outcome:
        """
        Drive one copy to the requested access state.

        Args:
            group_name: Consistency group display name (for logging)
            copy: Freshly fetched target copy
            direction: Direction.ENABLE or Direction.DISABLE

        Returns:
            Outcome for the group; TransitionError is converted to FAILED
        """
        self.history = [State.IDLE]
        enable = direction is Direction.ENABLE

        if enable and copy.is_active:
            logger.info(f"{group_name} - Image Access already enabled for copy: {copy.name}")
            self._enter(State.SKIPPED)
            return Outcome(
                group_name=group_name,
                copy_name=copy.name,
                status=OutcomeStatus.SKIPPED,
                reason="copy role is already ACTIVE",
            )

        task = Task.for_copy(group_name, copy, enable)
        converged = True
        try:
            self.image_access(task)
            if not self.config.check_mode:
                converged = self.wait_for_image_access(task)
            if enable:
                self.direct_access(task)
            else:
                self.start_transfer(task)
        except TransitionError as e:
            logger.warning(str(e))
            self._enter(State.FAILED, task)
            return Outcome(
                group_name=group_name,
                copy_name=copy.name,
                status=OutcomeStatus.FAILED,
                reason=str(e),
                simulated=self.config.check_mode,
            )

        self._enter(State.DONE, task)
        return Outcome(
            group_name=group_name,
            copy_name=copy.name,
            status=OutcomeStatus.SUCCESS,
            simulated=self.config.check_mode,
            converged=converged,
        )

    def image_access(self, task: Task) -> None:
        if task.enable:
            self._enter(State.IMAGE_ACCESS_ENABLING, task)
            action = "Enabling Latest Image"
        else:
            self._enter(State.IMAGE_ACCESS_DISABLING, task)
            action = "Disabling Image Access"

        if self.config.check_mode:
            logger.info(f"{task.group_name} - [check] {action} for copy {task.copy_name}")
            return

        response = self.client.set_image_access(task)
        if not response.accepted:
            logger.debug(f"Expected status code '204' and received: {response.status_code}")
            raise TransitionError(action, task, response.body)
        logger.info(f"{task.group_name} - {action} for copy {task.copy_name}")

    def _fetch(self, task: Task) -> Optional[Copy]:
        target = Copy(
            name=task.copy_name,
            group_id=task.group_id,
            cluster_id=task.cluster_id,
            copy_id=task.copy_id,
        )
        for copy in self.directory.get_copies(task.group_id):
            if copy.same_copy(target):
                return copy
        logger.debug(f"{task.group_name} - copy {task.copy_name} missing from group settings")
        return None

    def _poll(self, task: Task, converged: Callable[[Copy], bool], label: str) -> bool:
        """Re-read the copy until converged() holds, at most pollmax reads"""
        poll_max = self.config.poll_max
        for attempt in range(1, poll_max + 1):
            copy = self._fetch(task)
            if copy is not None and converged(copy):
                logger.debug(f"{task.group_name} - {label} settled after {attempt} read(s)")
                return True
            logger.debug(
                f"{task.group_name} - polling {label} ({attempt}/{poll_max}): "
                f"enabled={copy.image_access_enabled if copy else None} "
                f"mode={copy.image_mode if copy else None}"
            )
            if attempt < poll_max:
                self.sleep(self.config.poll_delay)
        logger.warning(
            f"{task.group_name} - Maximum poll count reached while waiting for {label}. "
            "Consider increasing 'pollmax' in configuration"
        )
        return False

    def wait_for_image_access(self, task: Task) -> bool:
        """
        Poll until image access matches the task, then (enable only) until
        the image mode reaches logged access. Returns False if either
        loop ran out of attempts.
        """
        self._enter(State.IMAGE_ACCESS_POLLING, task)
        logger.info(f"{task.group_name} - Waiting for image access to update..")
        enabled_ok = self._poll(
            task, lambda c: c.image_access_enabled == task.enable, "image access"
        )
        mode_ok = True
        if task.enable:
            mode_ok = self._poll(task, lambda c: c.image_mode == LOGGED_ACCESS, "logged access")
        return enabled_ok and mode_ok

    def _retry(self, call: Callable[[Task], ApiResponse], task: Task, action: str) -> None:
        poll_max = self.config.poll_max
        response = None
        for attempt in range(1, poll_max + 1):
            response = call(task)
            if response.accepted:
                return
            logger.debug(
                f"Expected status code '204' and received: {response.status_code} "
                f"({attempt}/{poll_max})"
            )
            if attempt < poll_max:
                self.sleep(self.config.poll_delay)
        logger.warning(f"{task.group_name} - Maximum poll count reached while {action}")
        raise TransitionError(action, task, response.body if response else "")

    def direct_access(self, task: Task) -> None:
        # enable direction only; finishing resumes transfer instead
        action = "Enabling Direct Access"
        self._enter(State.DIRECT_ACCESS_ENABLING, task)
        if self.config.check_mode:
            logger.info(f"{task.group_name} - [check] {action} for copy {task.copy_name}")
            return
        self._retry(self.client.set_direct_access, task, action)
        logger.info(f"{task.group_name} - {action} for copy {task.copy_name} done")

    def start_transfer(self, task: Task) -> None:
        self._enter(State.TRANSFER_STARTING, task)
        if self.config.check_mode:
            logger.info(f"{task.group_name} - [check] Starting Transfer for copy {task.copy_name}")
            return
        self._retry(self.client.start_transfer, task, "Starting Transfer")
        logger.info(f"{task.group_name} - Starting Transfer for copy {task.copy_name}")
