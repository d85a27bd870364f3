# tests/conftest.py
"""
Shared sample class texts for the eiflint test-suite.

Samples are written with four-space steps and converted to tab
indentation by :func:`tabbed`, so the files on disk stay readable while
the analysed text uses tabs like real sources do.
"""

import textwrap

import pytest


def tabbed(text):
    """Dedent *text* and turn each leading four-space step into a tab."""
    lines = []
    for line in textwrap.dedent(text).lstrip("\n").splitlines():
        stripped = line.lstrip(" ")
        depth = (len(line) - len(stripped)) // 4
        lines.append("\t" * depth + stripped)
    return "\n".join(lines) + "\n"


def with_line(text, number, replacement):
    """Replace 1-based line *number* of *text*."""
    lines = text.split("\n")
    lines[number - 1] = replacement
    return "\n".join(lines)


# ─────────────────────────────────────────────────────────────────────────
#  PERSON: two-statement creation procedure without a contract
# ─────────────────────────────────────────────────────────────────────────

PERSON_SOURCE = tabbed('''
    note
        description: "A person"

    class
        PERSON

    create
        make

    feature {NONE} -- Initialization

        make (a_name: STRING)
                -- Create a person called `a_name'.
            do
                name := a_name
                age := 0
            end

    feature -- Access

        name: STRING
                -- Full name.

        age: INTEGER
                -- Age in years.

    invariant
        name_attached: name /= Void

    end
''')

#: Line of ``make (a_name: STRING)`` in PERSON_SOURCE / VALID_PERSON_SOURCE.
PERSON_MAKE_LINE = 12

VALID_PERSON_SOURCE = tabbed('''
    note
        description: "A person"

    class
        PERSON

    create
        make

    feature {NONE} -- Initialization

        make (a_name: STRING)
                -- Create a person called `a_name'.
            require
                name_not_empty: not a_name.is_empty
            do
                name := a_name
                age := 0
            ensure
                name_set: name = a_name
            end

    feature -- Access

        name: STRING
                -- Full name.

        age: INTEGER
                -- Age in years.

    invariant
        name_attached: name /= Void

    end
''')

#: VALID_PERSON_SOURCE with line 5 (``PERSON``) indented by spaces.
SPACE_INDENTED_SOURCE = with_line(VALID_PERSON_SOURCE, 5, "    PERSON")


# ─────────────────────────────────────────────────────────────────────────
#  Once classes
# ─────────────────────────────────────────────────────────────────────────

ONCE_CLASS_SOURCE = tabbed('''
    once class
        COLOR

    create
        red, green

    feature -- Access

        red
                -- The red instance.
            once
                value := 1
            end

        green
                -- The green instance.
            do
                value := 2
            end

        value: INTEGER
                -- Internal code.

    end
''')

CONSISTENT_ONCE_CLASS_SOURCE = ONCE_CLASS_SOURCE.replace(
    "-- The green instance.\n\t\tdo\n", "-- The green instance.\n\t\tonce\n"
)

#: Line of ``red, green`` in the once-class samples.
ONCE_CREATORS_LINE = 5


# ─────────────────────────────────────────────────────────────────────────
#  Escapes
# ─────────────────────────────────────────────────────────────────────────

ESCAPES_SOURCE = tabbed('''
    class
        GREETER

    feature -- Access

        greeting: STRING = "Hello%Qworld%N"
                -- Greeting text.

        bad: STRING = "oops%Z"
                -- Broken escape.

        plain: STRING = "ok"
                -- Says %Y here.

    end
''')


# ─────────────────────────────────────────────────────────────────────────
#  Agents and quantifiers
# ─────────────────────────────────────────────────────────────────────────

AGENTS_SOURCE = tabbed('''
    class
        WALKER

    feature -- Basic operations

        walk (items: LIST [INTEGER])
                -- Visit `items'.
            require
                items_exist: items.count >= 0
            do
                items.do_all (agent show (?))
                items.do_all (agent show)
                items.do_all (agent report (? + 1, 5))
            ensure
                all_positive: ∀ x: items ¦ x > 0
                some_zero: ∃ y items ¦ y = 0
            end

        show (n: INTEGER)
                -- Print `n'.
            do
                print (n)
            end

        report (n, m: INTEGER)
                -- Print both.
            do
                print (n + m)
            end

    end
''')


# ─────────────────────────────────────────────────────────────────────────
#  Attachment and command/query
# ─────────────────────────────────────────────────────────────────────────

ATTACHMENT_SOURCE = tabbed('''
    class
        ACCOUNT

    feature -- Element change

        deposit (amount: INTEGER; note_text: STRING; memo: detachable STRING)
                -- Add `amount'.
            require
                text_exists: note_text /= Void
                memo_given: memo /= Void
                positive: amount > 0
            do
                balance := balance + amount
            end

    feature -- Access

        balance: INTEGER
                -- Current balance.

    end
''')

COMMAND_QUERY_SOURCE = tabbed('''
    class
        COUNTER

    feature -- Access

        count: INTEGER
                -- Current count.

        next: INTEGER
                -- Increment and return the count.
            do
                count := count + 1
                Result := count
            ensure
                incremented: count = old count + 1
            end

    end
''')

#: A query whose observed attribute is assigned after another statement.
STEPPING_COUNTER_SOURCE = tabbed('''
    class
        COUNTER

    feature -- Access

        count: INTEGER
                -- Current count.

        step: INTEGER
                -- Increment.

        last: INTEGER
                -- Previous result.

        next_value: INTEGER
                -- Advance and return the count.
            do
                count := count + step
                last := count
                Result := last
            ensure
                moved: last = old last + 1
            end

    end
''')


# ─────────────────────────────────────────────────────────────────────────
#  Assertion labels
# ─────────────────────────────────────────────────────────────────────────

UNLABELED_SOURCE = tabbed('''
    class
        STACK

    feature -- Element change

        push (v: INTEGER)
                -- Push `v'.
            require
                v >= 0
            do
                count := count + 1
            ensure
                one_more: count = old count + 1
            end

    feature -- Access

        count: INTEGER
                -- Number of items.

    invariant
        count_non_negative: count >= 0

    end
''')

#: Line of the unlabeled ``v >= 0``.
UNLABELED_LINE = 9


# ─────────────────────────────────────────────────────────────────────────
#  Syntax errors
# ─────────────────────────────────────────────────────────────────────────

BROKEN_FEATURE_SOURCE = tabbed('''
    class
        BROKEN

    feature -- Access

        first (a: ): INTEGER
                -- Broken signature.
            do
                Result := 1
            end

        second: INTEGER
                -- Fine.

    end
''')

LOOP_SOURCE = tabbed('''
    class
        SUMMER

    feature -- Basic operations

        sum (n: INTEGER): INTEGER
                -- Sum of 1 .. `n'.
            require
                non_negative: n >= 0
            local
                i: INTEGER
            do
                from
                    i := 1
                invariant
                    bounded: i <= n + 1
                until
                    i > n
                loop
                    Result := Result + i
                    i := i + 1
                end
                check
                    i > n
                end
            ensure
                done: Result >= 0
            end

    end
''')


@pytest.fixture
def write_source(tmp_path):
    """Write *text* to ``tmp_path / name`` and return the path as a string."""

    def _write(name, text):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return str(path)

    return _write
