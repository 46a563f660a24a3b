from setuptools import setup, Command
import subprocess

VERSION = '0.1.0'

datafiles = [('share/doc/proxstrap', ['proxstrap.cfg'])]

class pytest(Command):
    user_options = []
    def initialize_options(self): pass
    def finalize_options(self): pass
    def run(self):
        try:
            errno = subprocess.call('pytest tests --verbose --tb=short --junitxml=tests/results.xml'.split())
        except OSError as e:
            if e.errno == 2:
                raise OSError(2, "No such file or directory: pytest")
            raise
        raise SystemExit(errno)

setup(name='proxstrap',
      version=VERSION,
      description='proxstrap automated Proxmox VE bare-metal installer',
      license='LGPLv2',
      package_dir={'proxstrap': 'proxstrap'},
      package_data={'proxstrap': ['templates/*']},
      packages=['proxstrap'],
      install_requires=['requests'],
      extras_require={'test': ['pytest']},
      python_requires='>=3.6',
      scripts=['proxstrap-install'],
      cmdclass={'test' : pytest },
      data_files = datafiles,
      )
