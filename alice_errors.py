"""Errors raised while repairing an Alice world.

Every failure is fatal for the run; ``fix_alice_world.main`` is the only
place that catches them.
"""


class WorldRepairError(RuntimeError):
    pass


class InvalidInputPath(WorldRepairError):
    pass


class ArchiveExtractionFailure(WorldRepairError):
    pass


class ArchiveParseFailure(WorldRepairError):
    """An elementData.xml file is not well-formed XML."""

    def __init__(self, path, detail):
        super().__init__(f"XML parsing failed for {path}: {detail}")
        self.path = path


class MalformedDescriptor(WorldRepairError):
    """A descriptor declares an index child but has no index property."""

    def __init__(self, path):
        super().__init__(f"{path} declares an index variable but has no index property")
        self.path = path


class SerializationFailure(WorldRepairError):
    pass


class ArchivePackFailure(WorldRepairError):
    pass
