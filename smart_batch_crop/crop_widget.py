"""
Framing editor widget.

``FramingEditorWidget`` shows one image with its crop overlay and edits a
``FramingDescriptor``: dragging moves the normalized center, the wheel and
+/- keys zoom, arrow keys nudge.  The overlay is painted from the unrounded
crop rectangle so repeated drags never drift.
"""

from PIL import Image
from PyQt6.QtWidgets import QWidget, QSizePolicy
from PyQt6.QtCore import Qt, QRectF, QPointF, pyqtSignal
from PyQt6.QtGui import (
    QPainter, QPixmap, QColor, QPen, QImage,
    QKeyEvent, QMouseEvent, QPaintEvent, QResizeEvent, QWheelEvent,
)

from smart_batch_crop.config import (
    NUDGE_SMALL, NUDGE_LARGE, ZOOM_STEP_SMALL, ZOOM_STEP_LARGE, WHEEL_ZOOM_FACTOR,
)
from smart_batch_crop.models import (
    FramingDescriptor, crop_rect, display_rect, move_center, nudge, set_zoom, zoom_by, reset_framing,
)


# =============================================================================
# Qt ↔ PIL helpers
# =============================================================================

def pil_to_qpixmap(pil_img: Image.Image) -> QPixmap:
    """Convert a PIL Image to QPixmap."""
    img_rgba = pil_img.convert("RGBA")
    data = img_rgba.tobytes("raw", "RGBA")
    qimg = QImage(data, img_rgba.width, img_rgba.height, QImage.Format.Format_RGBA8888)
    return QPixmap.fromImage(qimg.copy())


# =============================================================================
# Framing editor — interactive crop overlay on image
# =============================================================================

class FramingEditorWidget(QWidget):
    """Displays an image with a draggable, zoomable crop overlay of fixed aspect."""

    framing_changed = pyqtSignal(object)  # FramingDescriptor

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setMinimumSize(400, 300)
        self.setFocusPolicy(Qt.FocusPolicy.StrongFocus)
        self.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Expanding)

        self._pixmap: QPixmap | None = None
        self._img_w = 0
        self._img_h = 0
        self._framing = FramingDescriptor()
        self._show_thirds = True
        self._show_crop = True
        self._pending = False

        # Display mapping
        self._scale = 1.0
        self._offset_x = 0.0
        self._offset_y = 0.0

        # Interaction state
        self._dragging = False
        self._drag_start = QPointF()
        self._center_start = (0.5, 0.5)

    def set_image(self, pixmap: QPixmap, img_w: int, img_h: int):
        """Set the image to display.

        *pixmap* may be a downscaled preview; it is stretched over the full
        ``img_w`` × ``img_h`` image area.
        """
        self._pixmap = pixmap
        self._img_w = img_w
        self._img_h = img_h
        self._update_display_mapping()
        self.update()

    def set_framing(self, framing: FramingDescriptor):
        self._framing = framing
        self.update()

    def framing(self) -> FramingDescriptor:
        return self._framing

    def set_overlay_options(self, show_crop: bool, show_thirds: bool):
        self._show_crop = show_crop
        self._show_thirds = show_thirds
        self.update()

    def set_pending(self, pending: bool):
        """Show/hide the smart crop busy indicator."""
        self._pending = pending
        self.update()

    def has_image(self) -> bool:
        return self._pixmap is not None

    def clear(self):
        self._pixmap = None
        self._img_w = 0
        self._img_h = 0
        self._framing = FramingDescriptor()
        self._pending = False
        self.update()

    # --- Coordinate mapping ---

    def _update_display_mapping(self):
        """Calculate scale and offset to fit image in widget with letterboxing."""
        if not self._pixmap or self._img_w == 0 or self._img_h == 0:
            return
        ww, wh = self.width(), self.height()
        self._scale = min(ww / self._img_w, wh / self._img_h)
        disp_w = self._img_w * self._scale
        disp_h = self._img_h * self._scale
        self._offset_x = (ww - disp_w) / 2
        self._offset_y = (wh - disp_h) / 2

    def _img_to_display(self, ix: float, iy: float) -> QPointF:
        return QPointF(ix * self._scale + self._offset_x, iy * self._scale + self._offset_y)

    def _crop_display_rect(self) -> QRectF:
        r = display_rect(self._img_w, self._img_h, self._framing)
        tl = self._img_to_display(r.x, r.y)
        return QRectF(tl.x(), tl.y(), r.w * self._scale, r.h * self._scale)

    # --- Editing ---

    def _commit(self, framing: FramingDescriptor):
        if framing != self._framing:
            self._framing = framing
            self.framing_changed.emit(framing)
            self.update()

    # --- Painting ---

    def paintEvent(self, event: QPaintEvent):
        painter = QPainter(self)
        painter.setRenderHint(QPainter.RenderHint.SmoothPixmapTransform)
        painter.fillRect(self.rect(), QColor(30, 30, 30))

        if not self._pixmap:
            painter.setPen(QColor(128, 128, 128))
            painter.drawText(self.rect(), Qt.AlignmentFlag.AlignCenter, "No image selected")
            painter.end()
            return

        # Draw image
        tl = self._img_to_display(0, 0)
        br = self._img_to_display(self._img_w, self._img_h)
        dest = QRectF(tl, br)
        painter.drawPixmap(dest, self._pixmap, QRectF(self._pixmap.rect()))

        if self._show_crop:
            self._paint_crop(painter, dest)

        if self._pending:
            painter.setPen(QColor(255, 200, 80))
            painter.drawText(
                dest.adjusted(8, 8, -8, -8).toRect(),
                Qt.AlignmentFlag.AlignTop | Qt.AlignmentFlag.AlignLeft,
                "Detecting framing…",
            )

        painter.end()

    def _paint_crop(self, painter: QPainter, dest: QRectF):
        crop = self._crop_display_rect()
        dim = QColor(0, 0, 0, 140)

        # Top / bottom / left / right strips outside the crop
        painter.fillRect(QRectF(dest.left(), dest.top(), dest.width(), crop.top() - dest.top()), dim)
        painter.fillRect(QRectF(dest.left(), crop.bottom(), dest.width(), dest.bottom() - crop.bottom()), dim)
        painter.fillRect(QRectF(dest.left(), crop.top(), crop.left() - dest.left(), crop.height()), dim)
        painter.fillRect(QRectF(crop.right(), crop.top(), dest.right() - crop.right(), crop.height()), dim)

        painter.setPen(QPen(QColor(255, 255, 255), 2))
        painter.drawRect(crop)

        if self._show_thirds:
            painter.setPen(QPen(QColor(255, 255, 255, 80), 1, Qt.PenStyle.DashLine))
            for i in range(1, 3):
                x = crop.left() + crop.width() * i / 3
                painter.drawLine(QPointF(x, crop.top()), QPointF(x, crop.bottom()))
                y = crop.top() + crop.height() * i / 3
                painter.drawLine(QPointF(crop.left(), y), QPointF(crop.right(), y))

        # Exported (rounded) size label
        r = crop_rect(self._img_w, self._img_h, self._framing)
        painter.setPen(QColor(255, 255, 255))
        painter.drawText(
            crop.adjusted(0, -20, 0, 0).toRect(),
            Qt.AlignmentFlag.AlignHCenter | Qt.AlignmentFlag.AlignBottom,
            f"{r.w} × {r.h}  ·  {self._framing.zoom * 100:.0f}%",
        )

    def resizeEvent(self, event: QResizeEvent):
        self._update_display_mapping()
        super().resizeEvent(event)

    # --- Mouse interaction ---

    def mousePressEvent(self, event: QMouseEvent):
        if event.button() != Qt.MouseButton.LeftButton or not self._pixmap:
            return
        pos = event.position()
        if self._crop_display_rect().contains(pos):
            self._dragging = True
            self._drag_start = pos
            self._center_start = (self._framing.center_x, self._framing.center_y)
            self.setCursor(Qt.CursorShape.ClosedHandCursor)

    def mouseMoveEvent(self, event: QMouseEvent):
        if not self._pixmap:
            return
        pos = event.position()

        if not self._dragging:
            over = self._crop_display_rect().contains(pos)
            self.setCursor(Qt.CursorShape.OpenHandCursor if over else Qt.CursorShape.ArrowCursor)
            return

        if self._scale == 0:
            return
        # Offsets are measured from the drag origin, not accumulated per event
        dx = (pos.x() - self._drag_start.x()) / self._scale / self._img_w
        dy = (pos.y() - self._drag_start.y()) / self._scale / self._img_h
        cx, cy = self._center_start
        self._commit(move_center(self._framing, self._img_w, self._img_h, cx + dx, cy + dy))

    def mouseReleaseEvent(self, event: QMouseEvent):
        if event.button() == Qt.MouseButton.LeftButton:
            self._dragging = False
            self.setCursor(Qt.CursorShape.ArrowCursor)

    def wheelEvent(self, event: QWheelEvent):
        if not self._pixmap:
            return
        delta = event.angleDelta().y() * WHEEL_ZOOM_FACTOR
        zoom = self._framing.zoom * (1 + delta)
        self._commit(set_zoom(self._framing, self._img_w, self._img_h, zoom))
        event.accept()

    # --- Keyboard ---

    def keyPressEvent(self, event: QKeyEvent):
        if not self._pixmap:
            return
        shift = bool(event.modifiers() & Qt.KeyboardModifier.ShiftModifier)
        step = NUDGE_LARGE if shift else NUDGE_SMALL
        zoom_step = ZOOM_STEP_LARGE if shift else ZOOM_STEP_SMALL
        f, w, h = self._framing, self._img_w, self._img_h

        key = event.key()
        if key == Qt.Key.Key_Left:
            self._commit(nudge(f, w, h, -step, 0))
        elif key == Qt.Key.Key_Right:
            self._commit(nudge(f, w, h, step, 0))
        elif key == Qt.Key.Key_Up:
            self._commit(nudge(f, w, h, 0, -step))
        elif key == Qt.Key.Key_Down:
            self._commit(nudge(f, w, h, 0, step))
        elif key in (Qt.Key.Key_Plus, Qt.Key.Key_Equal):
            self._commit(zoom_by(f, w, h, zoom_step))
        elif key == Qt.Key.Key_Minus:
            self._commit(zoom_by(f, w, h, -zoom_step))
        elif key == Qt.Key.Key_R:
            self._commit(reset_framing(f))
        else:
            super().keyPressEvent(event)
