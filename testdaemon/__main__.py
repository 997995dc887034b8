from testdaemon.apps.daemon_cli import run

run()
