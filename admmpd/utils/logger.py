import sys
import re

ANSI_CODE = re.compile('\033\\[[0-9;]*m')


# https://stackoverflow.com/questions/24204898/python-output-on-both-console-and-file
class Logger:
    """Tee ``print`` output into a log file while the ``with`` block is open."""

    def __init__(self, filename):
        self.filename = filename
        self.out_file = None
        self.old_stdout = None

    def write(self, text):
        self.old_stdout.write(text)
        # colors only make sense on the terminal
        self.out_file.write(ANSI_CODE.sub('', text))

    def flush(self):
        self.old_stdout.flush()
        self.out_file.flush()

    def __enter__(self):
        self.out_file = open(self.filename, 'w')
        self.old_stdout = sys.stdout
        sys.stdout = self
        return self

    def __exit__(self, type, value, traceback):
        sys.stdout = self.old_stdout
        self.out_file.close()
