from kiln.config.defaults import ContainerRegistryConfig, DefaultsConfig
from kiln.config.environment import BuildEnvironment

__all__ = [
    "BuildEnvironment",
    "ContainerRegistryConfig",
    "DefaultsConfig",
]
