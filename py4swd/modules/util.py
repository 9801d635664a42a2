# -*- coding: utf-8 -*-
'''
Small helpers shared by the inversion modules and scripts.

@author: py4swd
'''

import os
from pathlib import Path
from datetime import datetime

import numpy as np


def ensure_dir(path):
    '''Create the parent directory of *path* if needed and return *path*.'''
    p = Path(path).expanduser()
    if p.parent and not p.parent.exists():
        p.parent.mkdir(parents=True, exist_ok=True)
    return p.as_posix()


def resolve_path(fname, basedir=None):
    '''
    Resolve *fname* relative to *basedir* (or $PY4SWD_DATA) unless it is
    absolute or exists as given.
    '''
    if fname is None:
        return None
    p = Path(fname).expanduser()
    if p.is_absolute() or p.exists():
        return p.as_posix()
    if basedir is None:
        basedir = os.environ.get('PY4SWD_DATA', '')
    if basedir:
        return (Path(basedir).expanduser() / p).as_posix()
    return p.as_posix()


def calc_nrms(residuals=None, Cd=None):
    '''
    Normalized root mean square of residuals weighted by the diagonal data
    covariance.
    '''
    r = np.asarray(residuals, dtype=float).ravel()
    if r.size == 0:
        return 0.0
    if Cd is None:
        w = np.ones_like(r)
    else:
        w = np.asarray(Cd, dtype=float).ravel()
        if w.size != r.size:
            raise ValueError(f'Cd must have length {r.size}, got {w.size}.')
    return float(np.sqrt(np.mean(r**2 / w)))


def print_title(version='0.9.0', fname='', form='%m/%d/%Y, %H:%M:%S', out=True):
    '''
    Print version, calling file name, and modification date.
    '''
    if len(version) == 0:
        print('No version string given! Not printed to title.')
        tstr = ''
    else:
        ndat = '\n' + 'Date ' + datetime.now().strftime(form)
        tstr = 'Py4SWD Version ' + version + ndat + '\n'

    if len(fname) == 0:
        fstr = ''
    else:
        fnam = os.path.basename(fname)
        mdat = datetime.fromtimestamp(os.path.getmtime(fname)).strftime(form)
        fstr = fnam + ', modified ' + mdat + '\n'
        fstr = fstr + fname

    title = tstr + fstr

    if out:
        print(title)

    return title
