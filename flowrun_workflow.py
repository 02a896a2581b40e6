# flowrun_workflow.py
# Example workflow: word frequencies of the sources in this repo.
# Run with:  flowrun run   (or: flowrun analyze -i)
from __future__ import annotations
from flowrun import rule, wf

DELIVERABLES = ["report.txt"]


def workflow():
    return wf(
        # Collect the text to analyse
        rule(
            "cat src/flowrun/*.py > corpus.txt",
            outputs=["corpus.txt"],
            local=True,
        ),

        # Split into one lower-case word per line
        rule(
            "tr -cs 'A-Za-z' '\\n' < corpus.txt | tr 'A-Z' 'a-z' > words.txt",
            inputs=["corpus.txt"],
            outputs=["words.txt"],
        ),

        # Count and rank
        rule(
            "sort words.txt | uniq -c | sort -rn > counts.txt",
            inputs=["words.txt"],
            outputs=["counts.txt"],
        ),

        # Total number of words, independent of the ranking
        rule(
            "wc -l < words.txt > total.txt",
            inputs=["words.txt"],
            outputs=["total.txt"],
        ),

        # Final report; intermediates above are garbage-collected
        rule(
            "(echo total: $(cat total.txt); head -n 20 counts.txt) > report.txt",
            inputs=["counts.txt", "total.txt"],
            outputs=["report.txt"],
        ),
    )
