class MarkerLinkError(Exception):
    """Base class for marker_link failures."""


class DetectionError(MarkerLinkError):
    """The marker detector could not process the frame."""


class EstimationError(MarkerLinkError):
    """No rigid transform could be fitted for a marker."""


class LinkError(MarkerLinkError):
    """The Bluetooth session cannot carry a message."""


class LinkConnectError(LinkError):
    """Discovery or connection to the robot failed."""


class SendError(LinkError):
    """The transport rejected an outgoing message."""
