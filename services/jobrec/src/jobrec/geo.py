from __future__ import annotations

import base64

UULE_PREFIX = "a "
UULE_RADIUS = 65000


class UuleConverter:
    """Encodes coordinates as the ``uule`` location parameter understood by Google Jobs.

    The value is the unescaped form; the HTTP client applies query encoding,
    which turns the separating space into ``+``.
    """

    def __init__(self, radius: int = UULE_RADIUS) -> None:
        self.radius = radius

    def convert(self, latitude: float, longitude: float) -> str:
        descriptor = "\n".join(
            [
                "role: CURRENT_LOCATION",
                "producer: DEVICE_LOCATION",
                f"radius: {self.radius}",
                "latlng <",
                f"  latitude_e7: {round(latitude * 1e7)}",
                f"  longitude_e7: {round(longitude * 1e7)}",
                ">",
            ]
        )
        encoded = base64.b64encode(descriptor.encode()).decode("ascii")
        return f"{UULE_PREFIX}{encoded}"
