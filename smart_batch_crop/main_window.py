"""
Main application window.

Presents the ``ImageCollection``: image list, framing editor, settings and
batch export.  Collection transitions can arrive from analysis worker
threads; ``CollectionSignals`` turns them into a Qt signal so every repaint
happens on the GUI thread.
"""

from pathlib import Path
from typing import Callable

from PyQt6.QtWidgets import (
    QMainWindow, QWidget, QVBoxLayout, QHBoxLayout,
    QListWidget, QListWidgetItem, QPushButton, QLabel, QFileDialog,
    QSplitter, QGroupBox, QMessageBox, QProgressDialog, QStatusBar,
    QToolBar, QCheckBox, QComboBox, QSpinBox, QSlider, QApplication,
    QScrollArea, QLineEdit,
)
from PyQt6.QtCore import Qt, QObject, QThread, pyqtSignal
from PyQt6.QtGui import QAction, QKeySequence, QPixmap, QShortcut

from smart_batch_crop.collection import ImageCollection
from smart_batch_crop.config import (
    ASPECT_PRESETS, EDITOR_PREVIEW_SIZE, OUTPUT_FORMATS, QUALITY_MIN, QUALITY_MAX,
    SUPPORTED_EXTENSIONS, TARGET_SIZE_MAX,
)
from smart_batch_crop.crop_widget import FramingEditorWidget, pil_to_qpixmap
from smart_batch_crop.errors import NoImagesToExport, RasterizationFailed, UnknownImage
from smart_batch_crop.exporter import ExportResult, export_images, write_export
from smart_batch_crop.image_io import is_supported_file, make_thumbnail
from smart_batch_crop.models import FramingDescriptor, crop_rect, reset_framing
from smart_batch_crop.persistence import LocalPersistence


# =============================================================================
# Thread bridges
# =============================================================================

class CollectionSignals(QObject):
    """Re-emits collection transitions as a Qt signal (queued across threads)."""
    changed = pyqtSignal(str)

    def __init__(self, collection: ImageCollection, parent=None):
        super().__init__(parent)
        self._collection = collection
        collection.add_listener(self.changed.emit)

    def detach(self):
        self._collection.remove_listener(self.changed.emit)


class TaskThread(QThread):
    """Runs ``fn(progress_callback)`` off the GUI thread."""
    progress = pyqtSignal(int, int)
    succeeded = pyqtSignal(object)
    failed = pyqtSignal(str)

    def __init__(self, fn: Callable, parent=None):
        super().__init__(parent)
        self._fn = fn

    def run(self):
        try:
            result = self._fn(self.progress.emit)
        except Exception as e:
            self.failed.emit(str(e))
            return
        self.succeeded.emit(result)


# =============================================================================
# Main window
# =============================================================================

class MainWindow(QMainWindow):
    def __init__(self, collection: ImageCollection | None = None):
        super().__init__()
        self.setWindowTitle("Smart Batch Crop")
        self.setMinimumSize(900, 500)

        # Screen-aware startup size, clamped to 80% of screen
        preferred_w, preferred_h = 1600, 1000
        screen = QApplication.primaryScreen()
        if screen is not None:
            avail = screen.availableGeometry()
            preferred_w = min(preferred_w, int(avail.width() * 0.8))
            preferred_h = min(preferred_h, int(avail.height() * 0.8))
        self.resize(preferred_w, preferred_h)

        if collection is None:
            collection = ImageCollection(persistence=LocalPersistence())
        self._collection = collection
        self._signals = CollectionSignals(self._collection, self)
        self._signals.changed.connect(self._on_collection_changed)
        self._previews: dict[str, QPixmap] = {}
        self._task: TaskThread | None = None
        self._progress: QProgressDialog | None = None
        self._output_root: Path | None = None
        self._editor_image_id: str | None = None

        self._build_ui()
        self._sync_settings_widgets()
        self._refresh_list()
        self._update_button_states()

    # =========================================================================
    # UI construction
    # =========================================================================

    def _build_ui(self):
        self._build_toolbar()

        central = QWidget()
        self.setCentralWidget(central)
        main_layout = QHBoxLayout(central)
        main_layout.setContentsMargins(4, 4, 4, 4)

        splitter = QSplitter(Qt.Orientation.Horizontal)
        main_layout.addWidget(splitter)

        splitter.addWidget(self._build_left_panel())

        # Center panel — framing editor
        self._editor = FramingEditorWidget()
        self._editor.framing_changed.connect(self._on_framing_edited)
        splitter.addWidget(self._editor)

        splitter.addWidget(self._build_right_panel())
        splitter.setSizes([220, 800, 260])

        self._status = QStatusBar()
        self.setStatusBar(self._status)
        self._status.showMessage("Add images to begin.")

        # --- Keyboard Shortcuts ---
        QShortcut(QKeySequence(Qt.Key.Key_PageDown), self, self._next_image)
        QShortcut(QKeySequence(Qt.Key.Key_PageUp), self, self._prev_image)
        QShortcut(QKeySequence(Qt.Key.Key_Delete), self, self._remove_current)

    def _build_toolbar(self):
        toolbar = QToolBar("Main")
        toolbar.setMovable(False)
        self.addToolBar(toolbar)

        act_add = QAction("📂 Add Images", self)
        act_add.triggered.connect(self._select_files)
        toolbar.addAction(act_add)

        act_folder = QAction("📁 Add Folder", self)
        act_folder.triggered.connect(self._select_folder)
        toolbar.addAction(act_folder)

        toolbar.addSeparator()

        act_remove = QAction("✖ Remove", self)
        act_remove.triggered.connect(self._remove_current)
        toolbar.addAction(act_remove)
        self._act_remove = act_remove

        act_clear = QAction("🗑 Clear All", self)
        act_clear.triggered.connect(self._clear_all)
        toolbar.addAction(act_clear)
        self._act_clear = act_clear

        toolbar.addSeparator()

        act_export = QAction("▶▶ Export", self)
        act_export.setToolTip("Export all images (one file, or a ZIP for several)")
        act_export.triggered.connect(self._export)
        toolbar.addAction(act_export)
        self._act_export = act_export

    def _build_left_panel(self) -> QWidget:
        left_panel = QWidget()
        left_layout = QVBoxLayout(left_panel)
        left_layout.setContentsMargins(0, 0, 0, 0)

        left_layout.addWidget(QLabel("Images:"))
        self._image_list = QListWidget()
        self._image_list.currentRowChanged.connect(self._on_row_changed)
        left_layout.addWidget(self._image_list)

        self._counter_label = QLabel("")
        self._counter_label.setStyleSheet("color: #aaa; font-size: 8pt; padding: 2px;")
        left_layout.addWidget(self._counter_label)
        return left_panel

    def _build_right_panel(self) -> QWidget:
        inner = QWidget()
        inner_layout = QVBoxLayout(inner)
        inner_layout.setContentsMargins(0, 0, 0, 0)

        inner_layout.addWidget(self._build_dimensions_group())

        self._crop_info_label = QLabel("Crop: —")
        self._crop_info_label.setWordWrap(True)
        inner_layout.addWidget(self._crop_info_label)

        inner_layout.addWidget(self._build_crop_group())
        inner_layout.addWidget(self._build_actions_group())
        inner_layout.addWidget(self._build_export_group())
        inner_layout.addWidget(self._build_shortcuts_group())
        inner_layout.addStretch()

        # Scroll area wraps the inner widget so the panel can shrink
        scroll = QScrollArea()
        scroll.setWidgetResizable(True)
        scroll.setWidget(inner)
        scroll.setHorizontalScrollBarPolicy(Qt.ScrollBarPolicy.ScrollBarAlwaysOff)
        scroll.setFrameShape(scroll.Shape.NoFrame)

        right_panel = QWidget()
        right_panel.setFixedWidth(260)
        right_layout = QVBoxLayout(right_panel)
        right_layout.setContentsMargins(4, 0, 0, 0)
        right_layout.addWidget(scroll)
        return right_panel

    def _build_dimensions_group(self) -> QGroupBox:
        group = QGroupBox("Output Size")
        layout = QVBoxLayout(group)

        size_row = QHBoxLayout()
        self._width_spin = QSpinBox()
        self._width_spin.setRange(1, TARGET_SIZE_MAX)
        self._width_spin.editingFinished.connect(self._on_width_edited)
        self._height_spin = QSpinBox()
        self._height_spin.setRange(1, TARGET_SIZE_MAX)
        self._height_spin.editingFinished.connect(self._on_height_edited)
        size_row.addWidget(self._width_spin)
        size_row.addWidget(QLabel("×"))
        size_row.addWidget(self._height_spin)
        layout.addLayout(size_row)

        self._lock_check = QCheckBox("Lock aspect ratio")
        self._lock_check.toggled.connect(lambda on: self._collection.update_export_settings(aspect_locked=on))
        layout.addWidget(self._lock_check)

        self._preset_combo = QComboBox()
        self._preset_combo.addItem("Presets…")
        for label, _aspect in ASPECT_PRESETS:
            self._preset_combo.addItem(label)
        self._preset_combo.activated.connect(self._on_preset_selected)
        layout.addWidget(self._preset_combo)
        return group

    def _build_crop_group(self) -> QGroupBox:
        group = QGroupBox("Crop")
        layout = QVBoxLayout(group)

        self._show_crop_check = QCheckBox("Show crop overlay")
        self._show_crop_check.toggled.connect(lambda on: self._collection.update_settings(enable_crop=on))
        layout.addWidget(self._show_crop_check)

        self._smart_check = QCheckBox("Smart crop new images")
        self._smart_check.toggled.connect(lambda on: self._collection.update_settings(enable_smart_crop=on))
        layout.addWidget(self._smart_check)

        self._thirds_check = QCheckBox("Rule-of-thirds grid")
        self._thirds_check.toggled.connect(lambda on: self._collection.update_settings(show_rule_of_thirds=on))
        layout.addWidget(self._thirds_check)
        return group

    def _build_actions_group(self) -> QGroupBox:
        group = QGroupBox("Actions")
        layout = QVBoxLayout(group)

        btn_reset = QPushButton("🎯 Reset Framing")
        btn_reset.setToolTip("Centered fit (zoom 100%)")
        btn_reset.clicked.connect(self._reset_current)
        layout.addWidget(btn_reset)

        btn_smart_one = QPushButton("✨ Smart Crop This Image")
        btn_smart_one.clicked.connect(self._smart_crop_current)
        layout.addWidget(btn_smart_one)

        btn_apply_all = QPushButton("📋 Apply Framing to All")
        btn_apply_all.setToolTip("Copy this image's center and zoom to every image")
        btn_apply_all.clicked.connect(self._apply_framing_to_all)
        layout.addWidget(btn_apply_all)

        btn_smart_all = QPushButton("✨ Re-run Smart Crop (All)")
        btn_smart_all.clicked.connect(self._reanalyze_all)
        layout.addWidget(btn_smart_all)

        self._action_buttons = [btn_reset, btn_smart_one, btn_apply_all, btn_smart_all]
        return group

    def _build_export_group(self) -> QGroupBox:
        group = QGroupBox("Export Settings")
        layout = QVBoxLayout(group)

        fmt_row = QHBoxLayout()
        fmt_row.addWidget(QLabel("Format:"))
        self._format_combo = QComboBox()
        self._format_combo.addItems(OUTPUT_FORMATS)
        self._format_combo.currentTextChanged.connect(self._on_format_changed)
        fmt_row.addWidget(self._format_combo)
        layout.addLayout(fmt_row)

        quality_row = QHBoxLayout()
        self._quality_title = QLabel("Quality:")
        quality_row.addWidget(self._quality_title)
        self._quality_slider = QSlider(Qt.Orientation.Horizontal)
        self._quality_slider.setRange(QUALITY_MIN, QUALITY_MAX)
        quality_row.addWidget(self._quality_slider, stretch=1)
        self._quality_label = QLabel("")
        self._quality_label.setFixedWidth(24)
        quality_row.addWidget(self._quality_label)
        self._quality_slider.valueChanged.connect(lambda v: self._quality_label.setText(str(v)))
        self._quality_slider.sliderReleased.connect(
            lambda: self._collection.update_export_settings(quality=self._quality_slider.value())
        )
        layout.addLayout(quality_row)

        name_row = QHBoxLayout()
        self._prefix_edit = QLineEdit()
        self._prefix_edit.setPlaceholderText("prefix")
        self._prefix_edit.editingFinished.connect(
            lambda: self._collection.update_export_settings(prefix=self._prefix_edit.text())
        )
        self._suffix_edit = QLineEdit()
        self._suffix_edit.setPlaceholderText("suffix")
        self._suffix_edit.editingFinished.connect(
            lambda: self._collection.update_export_settings(suffix=self._suffix_edit.text())
        )
        name_row.addWidget(self._prefix_edit)
        name_row.addWidget(self._suffix_edit)
        layout.addLayout(name_row)

        start_row = QHBoxLayout()
        start_row.addWidget(QLabel("Start index:"))
        self._start_spin = QSpinBox()
        self._start_spin.setRange(0, 999999)
        self._start_spin.editingFinished.connect(
            lambda: self._collection.update_export_settings(start_index=self._start_spin.value())
        )
        start_row.addWidget(self._start_spin)
        layout.addLayout(start_row)
        return group

    def _build_shortcuts_group(self) -> QGroupBox:
        help_group = QGroupBox("Shortcuts")
        help_layout = QVBoxLayout(help_group)
        help_label = QLabel(
            "Drag: move crop\n"
            "Wheel / + / -: zoom\n"
            "Arrow keys: nudge (Shift: more)\n"
            "R: reset framing\n"
            "\n"
            "Page Down / Page Up: next / prev image\n"
            "Delete: remove image"
        )
        help_label.setStyleSheet("color: #888; font-size: 8pt;")
        help_layout.addWidget(help_label)
        return help_group

    # =========================================================================
    # Settings widgets
    # =========================================================================

    def _sync_settings_widgets(self):
        """Push collection settings into the widgets without re-triggering them."""
        settings = self._collection.settings
        export = settings.export
        widgets = [
            self._width_spin, self._height_spin, self._lock_check, self._show_crop_check,
            self._smart_check, self._thirds_check, self._format_combo, self._quality_slider,
            self._prefix_edit, self._suffix_edit, self._start_spin,
        ]
        for w in widgets:
            w.blockSignals(True)
        self._width_spin.setValue(export.target_w)
        self._height_spin.setValue(export.target_h)
        self._lock_check.setChecked(export.aspect_locked)
        self._show_crop_check.setChecked(settings.enable_crop)
        self._smart_check.setChecked(settings.enable_smart_crop)
        self._thirds_check.setChecked(settings.show_rule_of_thirds)
        self._format_combo.setCurrentText(export.format)
        self._quality_slider.setValue(export.quality)
        self._quality_label.setText(str(export.quality))
        self._prefix_edit.setText(export.prefix)
        self._suffix_edit.setText(export.suffix)
        self._start_spin.setValue(export.start_index)
        for w in widgets:
            w.blockSignals(False)

        lossy = export.format != "png"
        self._quality_title.setVisible(lossy)
        self._quality_slider.setVisible(lossy)
        self._quality_label.setVisible(lossy)
        self._editor.set_overlay_options(settings.enable_crop, settings.show_rule_of_thirds)

    def _on_width_edited(self):
        if self._width_spin.value() != self._collection.settings.export.target_w:
            self._collection.set_target_width(self._width_spin.value())

    def _on_height_edited(self):
        if self._height_spin.value() != self._collection.settings.export.target_h:
            self._collection.set_target_height(self._height_spin.value())

    def _on_preset_selected(self, index: int):
        if index <= 0:
            return
        _label, aspect = ASPECT_PRESETS[index - 1]
        self._collection.set_aspect(aspect)
        self._preset_combo.setCurrentIndex(0)

    def _on_format_changed(self, fmt: str):
        self._collection.update_export_settings(format=fmt)

    # =========================================================================
    # Collection → UI
    # =========================================================================

    def _on_collection_changed(self, event: str):
        if event == "settings":
            self._sync_settings_widgets()
        elif event in ("images_added", "image_removed", "cleared"):
            self._refresh_list()
        else:
            self._refresh_list_items()
        self._show_current()
        self._update_button_states()

    def _refresh_list(self):
        """Rebuild the list from the collection, keeping the selected image."""
        images = self._collection.images
        live = {img.id for img in images}
        for image_id in list(self._previews):
            if image_id not in live:
                del self._previews[image_id]

        self._image_list.blockSignals(True)
        self._image_list.clear()
        for img in images:
            item = QListWidgetItem()
            item.setData(Qt.ItemDataRole.UserRole, img.id)
            if img.thumbnail is not None:
                item.setIcon(pil_to_qpixmap(img.thumbnail))
            self._image_list.addItem(item)
        self._image_list.blockSignals(False)
        self._refresh_list_items()

        selected = self._collection.selected_id
        if selected is None and images:
            self._collection.set_selected(images[0].id)
            return
        self._select_row_for(selected)

    def _refresh_list_items(self):
        for row in range(self._image_list.count()):
            item = self._image_list.item(row)
            img = self._collection.get(item.data(Qt.ItemDataRole.UserRole))
            if img is None:
                continue
            if img.processing:
                icon = "⚙"
            elif img.analysis_pending:
                icon = "⏳"
            elif img.saliency is not None:
                icon = "✨"
            else:
                icon = "⬜"
            item.setText(f"  {icon}  {img.name}  ({img.img_w}×{img.img_h})")
        self._update_counter()

    def _select_row_for(self, image_id: str | None):
        self._image_list.blockSignals(True)
        for row in range(self._image_list.count()):
            if self._image_list.item(row).data(Qt.ItemDataRole.UserRole) == image_id:
                self._image_list.setCurrentRow(row)
                break
        else:
            self._image_list.setCurrentRow(-1)
        self._image_list.blockSignals(False)

    def _current_image(self):
        image_id = self._collection.selected_id
        return self._collection.get(image_id) if image_id else None

    def _show_current(self):
        img = self._current_image()
        if img is None:
            self._editor.clear()
            self._editor_image_id = None
            self._crop_info_label.setText("Crop: —")
            return

        pixmap = self._previews.get(img.id)
        if pixmap is None and img.image is not None:
            pixmap = pil_to_qpixmap(make_thumbnail(img.image, EDITOR_PREVIEW_SIZE))
            self._previews[img.id] = pixmap
        if pixmap is not None and (not self._editor.has_image() or self._editor_image_id != img.id):
            self._editor.set_image(pixmap, img.img_w, img.img_h)
        self._editor_image_id = img.id
        self._editor.set_framing(img.framing)
        self._editor.set_pending(img.analysis_pending)
        self._update_crop_info(img.img_w, img.img_h, img.framing)

    def _update_crop_info(self, img_w: int, img_h: int, framing: FramingDescriptor):
        r = crop_rect(img_w, img_h, framing)
        export = self._collection.settings.export
        self._crop_info_label.setText(
            f"Crop: {r.w}×{r.h}\n"
            f"Position: ({r.x}, {r.y})\n"
            f"Zoom: {framing.zoom * 100:.0f}%\n"
            f"Exports to: {export.target_w}×{export.target_h}"
        )

    def _update_counter(self):
        images = self._collection.images
        if not images:
            self._counter_label.setText("")
            return
        pending = sum(1 for img in images if img.analysis_pending)
        smart = sum(1 for img in images if img.saliency is not None)
        self._counter_label.setText(
            f"  {len(images)} image(s)  ·  ✨ {smart} smart  ·  ⏳ {pending} pending  "
        )

    def _update_button_states(self):
        has_images = len(self._collection) > 0
        has_current = self._current_image() is not None
        busy = self._task is not None
        self._act_export.setEnabled(has_images and not busy)
        self._act_clear.setEnabled(has_images and not busy)
        self._act_remove.setEnabled(has_current and not busy)
        for btn in self._action_buttons:
            btn.setEnabled(has_current and not busy)

    # =========================================================================
    # UI → collection
    # =========================================================================

    def _on_row_changed(self, row: int):
        item = self._image_list.item(row) if row >= 0 else None
        try:
            self._collection.set_selected(item.data(Qt.ItemDataRole.UserRole) if item else None)
        except UnknownImage:
            self._refresh_list()

    def _on_framing_edited(self, framing: FramingDescriptor):
        img = self._current_image()
        if img is None:
            return
        self._collection.update_framing(img.id, framing)

    def _reset_current(self):
        img = self._current_image()
        if img is not None:
            self._collection.update_framing(img.id, reset_framing(img.framing))

    def _smart_crop_current(self):
        img = self._current_image()
        if img is None:
            return
        if self._collection.run_analysis(img.id) is None:
            self._status.showMessage("Smart crop is turned off.")

    def _apply_framing_to_all(self):
        img = self._current_image()
        if img is None:
            return
        self._collection.copy_framing_to_all(img.framing)
        self._status.showMessage(f"Applied framing of {img.name} to {len(self._collection)} image(s)")

    def _remove_current(self):
        img = self._current_image()
        if img is not None:
            self._collection.remove_image(img.id)

    def _clear_all(self):
        answer = QMessageBox.question(
            self, "Clear Workspace",
            "Remove all images and forget stored framings?",
        )
        if answer == QMessageBox.StandardButton.Yes:
            self._collection.clear_all()
            self._status.showMessage("Workspace cleared")

    def _prev_image(self):
        if self._image_list.currentRow() > 0:
            self._image_list.setCurrentRow(self._image_list.currentRow() - 1)

    def _next_image(self):
        if self._image_list.currentRow() < self._image_list.count() - 1:
            self._image_list.setCurrentRow(self._image_list.currentRow() + 1)

    # =========================================================================
    # Loading
    # =========================================================================

    def _select_files(self):
        patterns = " ".join(f"*{ext}" for ext in sorted(SUPPORTED_EXTENSIONS))
        files, _ = QFileDialog.getOpenFileNames(self, "Add Images", str(Path.home()), f"Images ({patterns})")
        if files:
            self._load_paths([Path(f) for f in files])

    def _select_folder(self):
        folder = QFileDialog.getExistingDirectory(self, "Add Folder", str(Path.home()))
        if not folder:
            return
        files = sorted(
            (f for f in Path(folder).iterdir() if f.is_file() and is_supported_file(f)),
            key=lambda f: f.name.lower(),
        )
        if not files:
            self._status.showMessage("No supported images found in the selected folder.")
            return
        self._load_paths(files)

    def _load_paths(self, paths: list[Path]):
        self._status.showMessage(f"Loading {len(paths)} image(s)…")
        self._run_task(lambda _progress: self._collection.add_files(paths), "Loading images…", self._on_loaded)

    def _on_loaded(self, report):
        msg = f"Loaded {len(report.added)} image(s)"
        if report.failed:
            msg += f", {len(report.failed)} failed"
            names = "\n".join(f"• {name}: {reason}" for name, reason in report.failed[:10])
            QMessageBox.warning(self, "Some images could not be loaded", names)
        self._status.showMessage(msg)

    # =========================================================================
    # Smart crop / export (background)
    # =========================================================================

    def _run_task(self, fn: Callable, label: str, on_success: Callable, total: int = 0):
        if self._task is not None:
            return
        self._progress = QProgressDialog(label, None, 0, total, self)
        self._progress.setWindowModality(Qt.WindowModality.WindowModal)
        self._progress.setMinimumDuration(0)
        self._progress.setValue(0)

        task = TaskThread(fn, self)
        task.progress.connect(self._on_task_progress)
        task.succeeded.connect(on_success)
        task.failed.connect(lambda err: QMessageBox.critical(self, "Error", err))
        task.finished.connect(self._on_task_finished)
        self._task = task
        self._update_button_states()
        task.start()

    def _on_task_progress(self, done: int, total: int):
        if self._progress is not None:
            self._progress.setMaximum(total)
            self._progress.setValue(done)

    def _on_task_finished(self):
        if self._progress is not None:
            self._progress.close()
            self._progress = None
        if self._task is not None:
            self._task.deleteLater()
        self._task = None
        self._update_button_states()

    def _reanalyze_all(self):
        if not self._collection.settings.enable_smart_crop:
            self._status.showMessage("Smart crop is turned off.")
            return
        total = len(self._collection)
        self._run_task(
            lambda progress: self._collection.reanalyze_all(progress),
            "Detecting framing…", self._on_reanalyzed, total,
        )

    def _on_reanalyzed(self, results: dict):
        found = sum(1 for r in results.values() if r is not None)
        self._status.showMessage(f"Smart crop finished: {found}/{len(results)} suggestion(s)")

    def _ensure_output_folder(self) -> bool:
        if not self._output_root:
            folder = QFileDialog.getExistingDirectory(self, "Select Output Folder", str(Path.home()))
            if folder:
                self._output_root = Path(folder)
        if not self._output_root:
            QMessageBox.warning(self, "No Output Folder", "Please select an output folder first.")
            return False
        return True

    def _export(self):
        images = list(self._collection.images)
        if not images:
            QMessageBox.warning(self, "Nothing to Export", str(NoImagesToExport()))
            return
        if not self._ensure_output_folder():
            return
        settings = self._collection.settings.export
        out_dir = self._output_root

        def job(progress):
            try:
                result = export_images(images, settings, progress, collection=self._collection)
            except RasterizationFailed as exc:
                raise RuntimeError(f"Failed to export {exc.name}:\n{exc.reason}") from exc
            return result, write_export(result, out_dir)

        self._run_task(job, "Exporting…", self._on_exported, len(images))

    def _on_exported(self, payload: tuple[ExportResult, Path]):
        result, path = payload
        if result.failed:
            names = "\n".join(f"• {name}: {reason}" for name, reason in result.failed[:10])
            more = f"\n…and {len(result.failed) - 10} more" if len(result.failed) > 10 else ""
            QMessageBox.warning(self, "Some exports failed", f"{len(result.failed)} failed:\n\n{names}{more}")
        self._status.showMessage(f"Export complete ({len(result.exported)} file(s)). Output: {path}")

    def closeEvent(self, event):
        """Stop listening and let pending analysis finish before closing."""
        self._signals.detach()
        self._collection.shutdown()
        super().closeEvent(event)
