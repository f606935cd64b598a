"""
タスク管理システム メインエントリーポイント
アプリケーション起動・初期化・例外ハンドリング
"""

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from .config.settings import SystemSettings, get_settings
from .core.error_handler import InternalError, get_error_handler
from .core.logger import ProjectLogger, LogCategory, setup_logging
from .core.manager import TaskManagementSystem


class ApplicationManager:
    """
    アプリケーション管理クラス
    起動・初期化・シャットダウンの制御
    """

    def __init__(self):
        self.settings: Optional[SystemSettings] = None
        self.system: Optional[TaskManagementSystem] = None
        self.logger: Optional[ProjectLogger] = None
        self.error_handler = get_error_handler()
        self.is_initialized = False
        self.stop_event = threading.Event()

    def initialize(self, config_file: str = None, data_dir: str = None,
                   log_level: str = None, consumer: bool = False,
                   check_only: bool = False) -> bool:
        """
        アプリケーションを初期化

        Args:
            config_file: 設定ファイルパス
            data_dir: データディレクトリパス
            log_level: ログレベルの上書き
            consumer: 通知コンシューマーを有効にするか
            check_only: 整合性チェックのみ（起動時の保守処理を行わない）

        Returns:
            初期化成功の可否
        """
        try:
            print("タスク管理システムを初期化しています...")

            # 設定読み込み
            self.settings = get_settings(config_file)
            if data_dir:
                self.settings.database.data_directory = data_dir
            if log_level:
                self.settings.logging.level = log_level
            if consumer:
                self.settings.event_bus.enabled = True
                self.settings.event_bus.consumer_enabled = True

            problems = self.settings.validate_settings()
            if problems:
                for section, messages in problems.items():
                    for message in messages:
                        print(f"設定エラー [{section}]: {message}")
                return False

            # データディレクトリ作成
            data_path = Path(self.settings.database.data_directory)
            data_path.mkdir(parents=True, exist_ok=True)

            # Python標準ログの設定
            logging_settings = self.settings.logging
            log_path = None
            if logging_settings.enable_file_output:
                log_path = Path(logging_settings.log_directory)
                if not log_path.is_absolute():
                    log_path = data_path / log_path
            setup_logging(
                level=logging_settings.level,
                log_dir=str(log_path) if log_path else None,
                max_file_size_mb=logging_settings.max_file_size_mb,
                backup_count=logging_settings.backup_count,
                console=logging_settings.enable_console_output
            )

            # ログ管理システム初期化
            self.logger = ProjectLogger(
                max_entries_in_memory=logging_settings.max_memory_entries,
                enable_audit=logging_settings.enable_audit_log
            )
            self.error_handler.logger = self.logger

            self.logger.info(
                LogCategory.SYSTEM,
                "アプリケーション初期化開始",
                module=__name__,
                config_file=config_file,
                data_dir=str(data_path)
            )

            # タスク管理システム初期化
            self.system = TaskManagementSystem(settings=self.settings, logger=self.logger)

            # データ整合性チェック
            integrity = self.system.data_store.validate_data_integrity()
            if not integrity['valid']:
                self.logger.warning(
                    LogCategory.DATA,
                    "データ整合性の問題が検出されました",
                    module=__name__,
                    errors=integrity['errors']
                )

            if self.settings.database.cleanup_orphans_on_startup and not check_only:
                cleanup_result = self.system.run_maintenance()
                if any(cleanup_result.values()):
                    self.logger.info(
                        LogCategory.DATA,
                        f"孤立データをクリーンアップしました: {cleanup_result}",
                        module=__name__
                    )

            self.is_initialized = True

            counts = self.system.data_store.get_counts()
            self.logger.info(
                LogCategory.SYSTEM,
                f"初期化完了 - Users: {counts['users']}, Teams: {counts['teams']}, "
                f"Projects: {counts['projects']}, Tasks: {counts['tasks']}",
                module=__name__,
                statistics=counts
            )

            print("初期化が完了しました。")
            return True

        except Exception as e:
            error_msg = f"初期化エラー: {e}"
            print(error_msg)

            if self.logger:
                self.logger.critical(LogCategory.SYSTEM, error_msg, module=__name__, exception=e)

            self.error_handler.handle_error(
                InternalError(error_msg, original_exception=e),
                {'module': __name__, 'function': 'initialize'}
            )
            return False

    def start_background_services(self) -> None:
        """イベントバス接続と通知コンシューマーを開始"""
        if not self.is_initialized:
            return

        self.system.start()
        self.logger.info(
            LogCategory.SYSTEM,
            "バックグラウンドサービス開始",
            module=__name__,
            event_bus=str(self.system.event_bus),
            consumer=self.system.consumer is not None
        )

    def stop_background_services(self) -> None:
        """後続処理を完了させてからイベントバスを切断"""
        if not self.is_initialized or not self.system.is_running:
            return

        try:
            self.system.stop()
        except Exception as e:
            self.logger.error(
                LogCategory.SYSTEM,
                f"バックグラウンドサービス停止エラー: {e}",
                module=__name__,
                exception=e
            )

    def check_integrity(self) -> bool:
        """
        データ整合性をチェックして結果を表示

        Returns:
            整合性に問題がないか
        """
        result = self.system.data_store.validate_data_integrity()
        for message in result['errors']:
            print(f"エラー: {message}")
        for message in result['warnings']:
            print(f"警告: {message}")
        print(f"件数: {result['statistics']}")
        return result['valid']

    def request_stop(self, signum=None, frame=None) -> None:
        """停止を要求（シグナルハンドラー）"""
        self.stop_event.set()

    def run_service(self, maintenance_interval: float = 3600.0) -> int:
        """
        停止要求まで常駐し、定期的に保守処理を実行

        Args:
            maintenance_interval: 保守処理の間隔（秒）

        Returns:
            終了コード
        """
        self.start_background_services()
        print("サービスを開始しました。Ctrl+C で終了します。")

        while not self.stop_event.wait(maintenance_interval):
            try:
                result = self.system.run_maintenance()
                self.logger.info(LogCategory.DATA, "定期保守処理完了", module=__name__, result=result)
            except Exception as e:
                self.logger.error(LogCategory.DATA, "定期保守処理エラー", module=__name__, exception=e)

        return 0

    def shutdown(self) -> None:
        """アプリケーションを終了"""
        if not self.is_initialized:
            return

        self.logger.info(LogCategory.SYSTEM, "アプリケーション終了処理開始", module=__name__)

        # バックグラウンドサービス停止
        self.stop_background_services()

        # エラー統計出力
        error_stats = self.error_handler.get_error_statistics()
        if error_stats['total_errors'] > 0:
            print(f"セッション中のエラー: {error_stats['total_errors']}件")
            self.logger.info(
                LogCategory.SYSTEM,
                "セッション終了時エラー統計",
                module=__name__,
                error_statistics=error_stats
            )

        self.logger.info(LogCategory.SYSTEM, "アプリケーション終了", module=__name__)
        self.is_initialized = False
        print("タスク管理システムを終了しました。")

    def __enter__(self):
        """コンテキストマネージャー開始"""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """コンテキストマネージャー終了"""
        self.shutdown()


def create_argument_parser() -> argparse.ArgumentParser:
    """コマンドライン引数パーサーを作成"""
    parser = argparse.ArgumentParser(
        prog="taskpro",
        description="タスク管理システム",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
使用例:
  %(prog)s                          # サービスとして常駐
  %(prog)s --consumer               # 通知コンシューマーを有効にして常駐
  %(prog)s --config custom.json --data-dir /path/to/data
  %(prog)s --check-only             # データ整合性チェックのみ実行
  %(prog)s --maintenance            # 保守処理を1回実行して終了
        """
    )

    parser.add_argument('--config', type=str, metavar='FILE',
                        help='設定ファイルパス（省略時は既定値と環境変数のみ）')
    parser.add_argument('--data-dir', type=str, metavar='DIR',
                        help='データディレクトリパス（デフォルト: data）')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='ログレベルを指定')
    parser.add_argument('--consumer', action='store_true',
                        help='通知コンシューマー（notification-service）を有効化')
    parser.add_argument('--check-only', action='store_true',
                        help='データ整合性チェックのみ実行して終了')
    parser.add_argument('--maintenance', action='store_true',
                        help='孤立データと古い既読通知を削除して終了')
    parser.add_argument('--maintenance-interval', type=float, default=3600.0, metavar='SECONDS',
                        help='常駐時の保守処理間隔（秒）')
    parser.add_argument('--version', action='version', version='%(prog)s 1.0.0')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """メイン関数"""
    args = create_argument_parser().parse_args(argv)

    try:
        with ApplicationManager() as app:
            if not app.initialize(
                config_file=args.config,
                data_dir=args.data_dir,
                log_level=args.log_level,
                consumer=args.consumer,
                check_only=args.check_only
            ):
                return 1

            if args.check_only:
                print("データ整合性をチェックしています...")
                if app.check_integrity():
                    print("データ整合性: OK")
                    return 0
                print("データ整合性: エラーが検出されました")
                return 1

            if args.maintenance:
                print(f"保守処理結果: {app.system.run_maintenance()}")
                return 0

            signal.signal(signal.SIGTERM, app.request_stop)
            return app.run_service(args.maintenance_interval)

    except KeyboardInterrupt:
        print("\n\nプログラムが中断されました")
        return 0


if __name__ == "__main__":
    sys.exit(main())
