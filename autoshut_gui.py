#!/usr/bin/env python3
import sys
from collections import deque

from PySide6.QtCore import Qt, QTimer
from PySide6.QtWidgets import (
    QApplication, QMainWindow, QWidget,
    QFileDialog, QLabel, QPushButton,
    QLineEdit, QTextEdit, QListWidget, QListWidgetItem,
    QComboBox, QSpinBox, QMessageBox,
    QHBoxLayout, QVBoxLayout, QGridLayout,
    QFrame
)
from PySide6.QtGui import QTextCursor

from autoshut_core import (
    STATE_FAILED, STATE_MISSING, STATE_SHUTDOWN, STATE_STOPPED, STATE_WATCHING,
    AutoShutdownConfig, AutoShutdownCore
)


# =========================
# LOG BUFFER (BOUNDED)
# =========================
class LogBuffer:
    def __init__(self, max_lines=8000):
        self.lines = deque(maxlen=max_lines)

    def append(self, line):
        self.lines.append(line)

    def filtered(self, level):
        if level == "ALL":
            return list(self.lines)
        return [l for l in self.lines if f"[{level}]" in l]


# =========================
# MAIN WINDOW
# =========================
class AutoShutdownGUI(QMainWindow):

    DISPLAY_NAMES = {
        "state": "State",
        "armed_app_id": "Watching",
        "polls": "Checks",
        "next_check_in": "Next check",
    }

    FINAL_STATES = (STATE_MISSING, STATE_STOPPED, STATE_SHUTDOWN, STATE_FAILED)

    def __init__(self):
        super().__init__()
        self.setWindowTitle("Steam Auto-Shutdown")
        self.resize(1000, 640)

        self.core = None
        self.log_index = 0
        self.log_buffer = LogBuffer()

        self._build_ui()
        self._apply_theme()

        self.poll_timer = QTimer(self)
        self.poll_timer.timeout.connect(self.poll_core)

    # =========================
    # UI
    # =========================

    def _build_ui(self):
        central = QWidget()
        self.setCentralWidget(central)
        root = QVBoxLayout(central)

        # -------- Header metrics --------
        self.metric_labels = {}
        header = QHBoxLayout()
        for key in ["state", "armed_app_id", "polls", "next_check_in"]:
            title = self.DISPLAY_NAMES.get(key, key)
            lbl = QLabel(f"{title}: -")
            lbl.setToolTip({
                "state": "What the engine is doing right now",
                "armed_app_id": "Download the shutdown is waiting on",
                "polls": "Folder checks made since arming",
                "next_check_in": "Seconds until the next folder check",
            }.get(key, key))
            lbl.setFrameStyle(QFrame.Panel | QFrame.Raised)
            lbl.setAlignment(Qt.AlignCenter)
            lbl.setMinimumWidth(160)
            header.addWidget(lbl)
            self.metric_labels[key] = lbl
        root.addLayout(header)

        # -------- Body --------
        body = QHBoxLayout()
        root.addLayout(body, 1)

        # -------- Sidebar --------
        sidebar_widget = QWidget()
        sidebar_widget.setMaximumWidth(420)
        sidebar_widget.setMinimumWidth(380)

        sidebar = QGridLayout(sidebar_widget)
        sidebar.setContentsMargins(6, 6, 6, 6)
        sidebar.setVerticalSpacing(6)

        r = 0

        # Download folder
        self.watch_dir = QLineEdit(AutoShutdownConfig().watch_directory)
        self.watch_dir.setToolTip(
            "Steam's steamapps/downloading folder."
        )

        btn_dir = QPushButton("Browse")
        btn_dir.setToolTip("Select the Steam downloading folder.")
        btn_dir.clicked.connect(self.select_watch_dir)
        sidebar.addWidget(QLabel("Download folder"), r, 0)
        sidebar.addWidget(self.watch_dir, r, 1)
        sidebar.addWidget(btn_dir, r, 2)
        r += 1

        self.interval = QSpinBox()
        self.interval.setRange(1, 3600)
        self.interval.setValue(AutoShutdownConfig().poll_interval_seconds)
        self.interval.setToolTip("Seconds between folder checks.")
        sidebar.addWidget(QLabel("Check interval (s)"), r, 0)
        sidebar.addWidget(self.interval, r, 1)
        r += 1

        # Pending downloads
        self.download_list = QListWidget()
        self.download_list.setToolTip(
            "Downloads currently in progress. Select the one to wait for."
        )
        sidebar.addWidget(self.download_list, r, 0, 1, 3); r += 1

        # Controls
        self.btn_refresh = QPushButton("REFRESH")
        self.btn_refresh.setToolTip("Scan the download folder and look up game names.")

        self.btn_arm = QPushButton("ARM")
        self.btn_arm.setToolTip("Shut down when the selected download finishes.")

        self.btn_disarm = QPushButton("DISARM")
        self.btn_disarm.setToolTip("Cancel the pending shutdown.")
        self.btn_disarm.setEnabled(False)

        sidebar.addWidget(self.btn_refresh, r, 0, 1, 3); r += 1
        sidebar.addWidget(self.btn_arm, r, 0, 1, 3); r += 1
        sidebar.addWidget(self.btn_disarm, r, 0, 1, 3); r += 1

        self.btn_refresh.clicked.connect(self.refresh_downloads)
        self.btn_arm.clicked.connect(self.arm)
        self.btn_disarm.clicked.connect(self.disarm)

        body.addWidget(sidebar_widget, 0)

        # -------- Log --------
        log_layout = QVBoxLayout()
        body.addLayout(log_layout, 1)

        self.severity_filter = QComboBox()
        self.severity_filter.addItems(
            ["ALL", "ERROR", "WARNING", "INFO", "SUCCESS"]
        )
        self.severity_filter.setToolTip("Filter log messages by severity level.")
        self.severity_filter.currentTextChanged.connect(self.refresh_log_view)
        log_layout.addWidget(self.severity_filter)

        self.log_view = QTextEdit()
        self.log_view.setReadOnly(True)
        self.log_view.setToolTip("Activity Log.")
        log_layout.addWidget(self.log_view, 1)

    # =========================
    # CORE CONTROL
    # =========================
    def select_watch_dir(self):
        d = QFileDialog.getExistingDirectory(self, "Select Steam downloading folder")
        if d:
            self.watch_dir.setText(d)

    def _new_core(self):
        config = AutoShutdownConfig().with_overrides(
            watch_directory=self.watch_dir.text() or None,
            poll_interval_seconds=self.interval.value(),
        )
        self.core = AutoShutdownCore(config)
        self.log_index = 0
        self.log_buffer = LogBuffer()
        self.log_view.clear()

    def refresh_downloads(self):
        if self.core and self.core.get_stats()["state"] == STATE_WATCHING:
            return

        self._new_core()
        self.download_list.clear()
        QApplication.setOverrideCursor(Qt.WaitCursor)
        try:
            downloads = self.core.list_downloads()
        finally:
            QApplication.restoreOverrideCursor()

        for app_id, name in downloads:
            item = QListWidgetItem(f"{app_id} - {name}")
            item.setData(Qt.UserRole, (app_id, name))
            self.download_list.addItem(item)

        self.poll_core()

    def arm(self):
        item = self.download_list.currentItem()
        if item is None:
            QMessageBox.information(self, "Steam Auto-Shutdown", "Select a download first.")
            return

        if not self.core:
            self._new_core()

        app_id, name = item.data(Qt.UserRole)
        self.core.start(app_id, name)
        self.btn_arm.setEnabled(False)
        self.btn_refresh.setEnabled(False)
        self.btn_disarm.setEnabled(True)
        self.poll_timer.start(500)

    def disarm(self):
        if self.core:
            self.core.stop()

    # =========================
    # POLLING
    # =========================
    def poll_core(self):
        if not self.core:
            return

        stats = self.core.get_stats()
        for k, lbl in self.metric_labels.items():
            title = self.DISPLAY_NAMES.get(k, k)
            value = stats.get(k)
            if k == "next_check_in":
                lbl.setText(f"{title}: {value:.0f}s")
            elif k == "armed_app_id" and stats.get("armed_app_name"):
                lbl.setText(f"{title}: {stats['armed_app_name']}")
            else:
                lbl.setText(f"{title}: {value if value is not None else '-'}")

        logs, self.log_index = self.core.get_logs(self.log_index)
        cursor = self.log_view.textCursor()
        cursor.movePosition(QTextCursor.End)

        for line in logs:
            self.log_buffer.append(line)
            if (
                self.severity_filter.currentText() == "ALL"
                or f"[{self.severity_filter.currentText()}]" in line
            ):
                cursor.insertText(line + "\n")

        self.log_view.setTextCursor(cursor)

        if self.poll_timer.isActive() and stats["state"] in self.FINAL_STATES:
            self.poll_timer.stop()
            self.btn_arm.setEnabled(True)
            self.btn_refresh.setEnabled(True)
            self.btn_disarm.setEnabled(False)

            if stats["state"] == STATE_FAILED:
                # no recovery from a failed shutdown command
                QMessageBox.critical(self, "Steam Auto-Shutdown",
                                     f"Shutdown command failed:\n{self.core.failure}")
                QApplication.exit(1)

    def refresh_log_view(self):
        self.log_view.clear()
        cursor = self.log_view.textCursor()
        cursor.movePosition(QTextCursor.End)

        level = self.severity_filter.currentText()
        for line in self.log_buffer.filtered(level):
            cursor.insertText(line + "\n")

        self.log_view.setTextCursor(cursor)

    def closeEvent(self, event):
        """
        Disarm before closing so no shutdown fires after the window is gone.
        """
        if self.poll_timer.isActive():
            self.poll_timer.stop()

        if self.core:
            self.core.stop()
            self.core = None

        event.accept()

    # =========================
    # THEME
    # =========================
    def _apply_theme(self):
        self.setStyleSheet("""
            QWidget {
                background-color: #1b2838;
                color: #ffffff;
            }
            QTextEdit, QListWidget {
                background-color: #171a21;
            }
            QPushButton {
                background-color: #66c0f4;
                color: #171a21;
                padding: 6px;
                border-radius: 4px;
            }
            QPushButton:disabled {
                background-color: #3d4450;
            }
        """)


# =========================
# ENTRY
# =========================
def main():
    app = QApplication(sys.argv)
    win = AutoShutdownGUI()
    win.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
