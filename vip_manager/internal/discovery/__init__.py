"""Leader key watchers for the supported coordination stores."""

from .leader_checker import LeaderChecker, UnknownDCSTypeError, new_leader_checker

__all__ = ['LeaderChecker', 'UnknownDCSTypeError', 'new_leader_checker']
