from enum import Enum
from typing import Dict, List, Set

from load_test_platform.config.logger import logger


class RunState(Enum):
    """压测运行状态"""
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"  # 等待进行中的请求结束
    TERMINATED = "terminated"


class UserState(Enum):
    """虚拟用户状态"""
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


RUN_TRANSITIONS: Dict[Enum, Set[Enum]] = {
    RunState.IDLE: {RunState.RUNNING},
    RunState.RUNNING: {RunState.DRAINING},
    RunState.DRAINING: {RunState.TERMINATED},
    RunState.TERMINATED: set(),
}

USER_TRANSITIONS: Dict[Enum, Set[Enum]] = {
    UserState.IDLE: {UserState.RUNNING, UserState.STOPPED},
    UserState.RUNNING: {UserState.STOPPED},
    UserState.STOPPED: set(),
}


class StateMachine:
    """
    按转移表驱动的状态机

    非法转移不抛异常：返回 False，状态保持不变。
    history 按顺序记录经历过的状态（含初始状态）。
    """

    def __init__(self, initial_state: Enum, transitions: Dict[Enum, Set[Enum]]):
        self._current = initial_state
        self._transitions = transitions
        self.history: List[Enum] = [initial_state]

    def can_transition(self, new_state: Enum) -> bool:
        return new_state in self._transitions.get(self._current, ())

    def transition(self, new_state: Enum) -> bool:
        if not self.can_transition(new_state):
            logger.debug(
                "State transition rejected",
                current=self._current.value,
                target=new_state.value,
            )
            return False
        self._current = new_state
        self.history.append(new_state)
        return True

    def get_current_state(self) -> Enum:
        return self._current
