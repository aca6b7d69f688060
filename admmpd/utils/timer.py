from time import perf_counter

stack = []
index = dict()
flags = []
levels = []
timings = []
counts = []


class Timer(object):
    """Accumulate wall-clock time of a labelled section; sections nest."""

    def __init__(self, description):
        self.description = description

    def __enter__(self):
        stack.append(self.description)
        key = tuple(stack)
        if key not in index:
            index[key] = len(flags)
            flags.append(self.description)
            levels.append(len(stack))
            timings.append(0.0)
            counts.append(0)
        self.id = index[key]
        counts[self.id] += 1
        timings[self.id] -= perf_counter()
        return self

    def __exit__(self, type, value, traceback):
        timings[self.id] += perf_counter()
        stack.pop()


def Timer_Reset():
    stack.clear()
    index.clear()
    flags.clear()
    levels.clear()
    timings.clear()
    counts.clear()


def Timer_Total():
    return sum(t for l, t in zip(levels, timings) if l == 1)


def Timer_Print():
    total = Timer_Total()
    print('')
    for f, l, t, c in zip(flags, levels, timings, counts):
        print('  ' * l, end='')
        share = t / total if total > 0 else 0.0
        print('{0:s} : {1:4f} ({2:.0%}, {3:d} calls)'.format(f, t, share, c))
    print('')
