from wsreplay.cmd.server import main

if __name__ == "__main__":
    main()
