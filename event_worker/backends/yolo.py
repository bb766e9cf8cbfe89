"""
Shared pre/post-processing for YOLO-format detection models.

Used by the ONNX Runtime and OpenCV DNN backends, which both run a YOLO
export producing a (1, 4 + num_classes, N) tensor of cx, cy, w, h boxes
followed by per-class scores.
"""

import os
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from ..models import DetectedObject
from .base import make_detection

COCO_LABELS = (
    "person", "bicycle", "car", "motorcycle", "airplane", "bus", "train", "truck", "boat",
    "traffic light", "fire hydrant", "stop sign", "parking meter", "bench", "bird", "cat", "dog",
    "horse", "sheep", "cow", "elephant", "bear", "zebra", "giraffe", "backpack", "umbrella",
    "handbag", "tie", "suitcase", "frisbee", "skis", "snowboard", "sports ball", "kite",
    "baseball bat", "baseball glove", "skateboard", "surfboard", "tennis racket", "bottle",
    "wine glass", "cup", "fork", "knife", "spoon", "bowl", "banana", "apple", "sandwich", "orange",
    "broccoli", "carrot", "hot dog", "pizza", "donut", "cake", "chair", "couch", "potted plant",
    "bed", "dining table", "toilet", "tv", "laptop", "mouse", "remote", "keyboard", "cell phone",
    "microwave", "oven", "toaster", "sink", "refrigerator", "book", "clock", "vase", "scissors",
    "teddy bear", "hair drier", "toothbrush",
)

INPUT_SIZE = 640
PAD_VALUE = 114


def load_labels(labels_path: Optional[str]) -> Sequence[str]:
    """Read one class name per line, falling back to the COCO classes"""
    if not labels_path or not os.path.exists(labels_path):
        return COCO_LABELS
    with open(labels_path, 'r', encoding='utf-8') as f:
        return tuple(line.strip() for line in f if line.strip())


def letterbox(image: np.ndarray, size: int = INPUT_SIZE) -> Tuple[np.ndarray, float, int, int]:
    """
    Resize keeping aspect ratio and pad to a square input.

    Returns:
        Tuple of (NCHW float32 blob in [0, 1], scale, pad_x, pad_y)
    """
    height, width = image.shape[:2]
    scale = min(size / height, size / width)
    new_w, new_h = int(round(width * scale)), int(round(height * scale))
    resized = cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_LINEAR)

    canvas = np.full((size, size, 3), PAD_VALUE, dtype=np.uint8)
    pad_x = (size - new_w) // 2
    pad_y = (size - new_h) // 2
    canvas[pad_y:pad_y + new_h, pad_x:pad_x + new_w] = resized

    blob = canvas.astype(np.float32).transpose(2, 0, 1)[np.newaxis] / 255.0
    return blob, scale, pad_x, pad_y


def decode_predictions(
    output: np.ndarray,
    scale: float,
    pad_x: int,
    pad_y: int,
    labels: Sequence[str],
    timestamp: float,
    conf_threshold: float = 0.25,
    nms_threshold: float = 0.45
) -> List[DetectedObject]:
    """Convert raw YOLO output to pixel-space detections after NMS"""
    preds = np.squeeze(np.asarray(output, dtype=np.float32), axis=0)
    if preds.shape[0] < preds.shape[1]:
        preds = preds.T  # (N, 4 + classes)

    scores = preds[:, 4:]
    if scores.size == 0:
        return []
    class_ids = scores.argmax(axis=1)
    confidences = scores.max(axis=1)

    keep = confidences >= conf_threshold
    if not np.any(keep):
        return []
    preds, class_ids, confidences = preds[keep], class_ids[keep], confidences[keep]

    boxes = []
    for cx, cy, w, h in preds[:, :4]:
        x = (cx - w / 2 - pad_x) / scale
        y = (cy - h / 2 - pad_y) / scale
        boxes.append([float(x), float(y), float(w / scale), float(h / scale)])

    indices = cv2.dnn.NMSBoxes(boxes, confidences.tolist(), conf_threshold, nms_threshold)
    detections = []
    for i in np.array(indices).flatten():
        class_id = int(class_ids[i])
        label = labels[class_id] if class_id < len(labels) else f"class_{class_id}"
        x, y, w, h = boxes[i]
        detections.append(make_detection(label, float(confidences[i]), x, y, w, h, timestamp))

    return detections
