"""CV detector configuration."""

# Object detector settings
DEFAULT_OBJECT_MODEL = "yolov8n.pt"
CONFIDENCE = 0.35
IOU_THRESHOLD = 0.45
IMAGE_SIZE = 640
AGNOSTIC_NMS = True  # generic objects: one box per item regardless of class

# Marker detector settings
QR_MIN_SIDE_PX = 8.0  # discard degenerate quads from partial QR finds
