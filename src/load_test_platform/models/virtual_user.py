from dataclasses import dataclass, field

from load_test_platform.core.state_machine import StateMachine, UserState, USER_TRANSITIONS


@dataclass
class VirtualUser:
    """虚拟用户"""

    id: int  # 从 1 开始
    iteration: int = 0  # 已开始的迭代数，同时作为下一次迭代的编号

    state_machine: StateMachine = field(
        default_factory=lambda: StateMachine(UserState.IDLE, USER_TRANSITIONS)
    )

    @property
    def state(self) -> UserState:
        return self.state_machine.get_current_state()
