"""
Desktop entry point and dark-theme stylesheet.

Usage:
    smart-batch-crop gui
"""

import logging
import sys

from PyQt6.QtWidgets import QApplication

from smart_batch_crop.collection import ImageCollection
from smart_batch_crop.main_window import MainWindow
from smart_batch_crop.persistence import LocalPersistence

DARK_STYLESHEET = """
    QMainWindow { background: #2b2b2b; }
    QWidget { background: #2b2b2b; color: #ddd; font-size: 10pt; }
    QListWidget { background: #1e1e1e; border: 1px solid #444; }
    QListWidget::item { padding: 4px; }
    QListWidget::item:selected { background: #3a6ea5; }
    QGroupBox { border: 1px solid #555; border-radius: 4px; margin-top: 8px; padding-top: 12px; font-weight: bold; }
    QGroupBox::title { subcontrol-origin: margin; left: 8px; padding: 0 4px; }
    QPushButton { background: #3a3a3a; border: 1px solid #555; border-radius: 4px; padding: 6px 12px; }
    QPushButton:hover { background: #4a4a4a; }
    QPushButton:disabled { color: #666; }
    QLineEdit, QSpinBox, QComboBox { background: #1e1e1e; border: 1px solid #555; border-radius: 3px; padding: 2px 4px; }
    QToolBar { background: #333; border-bottom: 1px solid #444; spacing: 4px; padding: 4px; }
    QStatusBar { background: #333; border-top: 1px solid #444; }
    QProgressDialog { background: #2b2b2b; }
"""


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    app = QApplication(sys.argv)
    app.setApplicationName("Smart Batch Crop")
    app.setStyleSheet(DARK_STYLESHEET)

    collection = ImageCollection(persistence=LocalPersistence())
    window = MainWindow(collection)
    window.show()

    sys.exit(app.exec())


if __name__ == "__main__":
    main()
