"""
经验记忆子系统
"""
from autopilot.memory.experience import ExperienceMemory
from autopilot.memory.models import AgentStateSnapshot, Experience, Knowledge, Memory

__all__ = ["AgentStateSnapshot", "Experience", "ExperienceMemory", "Knowledge", "Memory"]
